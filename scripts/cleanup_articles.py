#!/usr/bin/env python
"""
Daily Retention Job

Expires approved items past the expiry window, then hard-deletes stale
pending/rejected/expired items and old read notifications.

Usage:
    python scripts/cleanup_articles.py
    python scripts/cleanup_articles.py --expire-days 60 --cleanup-days 30
    python scripts/cleanup_articles.py --skip-expiry
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from newsdesk.services.scheduler import (
    DEFAULT_CLEANUP_DAYS, DEFAULT_EXPIRY_DAYS, run_cleanup_job, run_expiry_job,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger('cleanup_articles')


def main():
    parser = argparse.ArgumentParser(description='Expire and clean up old ingested items')
    parser.add_argument('--expire-days', type=int, default=DEFAULT_EXPIRY_DAYS,
                        help='Expire approved items older than this')
    parser.add_argument('--cleanup-days', type=int, default=DEFAULT_CLEANUP_DAYS,
                        help='Delete pending/rejected/expired items older than this')
    parser.add_argument('--skip-expiry', action='store_true', help='Only run the cleanup step')
    args = parser.parse_args()

    logger.info("=" * 40)
    logger.info("RETENTION JOB STARTING")
    logger.info("=" * 40)

    exit_code = 0

    if not args.skip_expiry:
        expiry = run_expiry_job(args.expire_days)
        if expiry['success']:
            logger.info(f"Expired:                {expiry['expired']}")
        else:
            exit_code = 1

    cleanup = run_cleanup_job(args.cleanup_days)
    logger.info(f"Deleted articles:       {cleanup['deleted_articles']}")
    logger.info(f"Deleted notifications:  {cleanup['deleted_notifications']}")
    if not cleanup['success']:
        logger.warning(f"Errors: {cleanup['errors']}")
        exit_code = 1

    logger.info("=" * 40)
    logger.info("RETENTION JOB COMPLETE" if exit_code == 0 else "RETENTION JOB FINISHED WITH ERRORS")
    logger.info("=" * 40)
    return exit_code


if __name__ == '__main__':
    sys.exit(main())
