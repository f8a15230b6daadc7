#!/usr/bin/env python
"""
RSS Feed Fetch Job

Runs every 15 minutes via cron to fetch all active feed sources whose
fetch interval has elapsed and store new ingested items.

Usage:
    python scripts/fetch_feeds.py

Exit codes:
    0 - Success (individual source failures are recorded on the source)
    1 - The batch could not run
"""

import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from newsdesk.services.scheduler import run_feed_fetch_job

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger('fetch_feeds')


def main():
    """Main entry point for the feed fetch job."""
    logger.info("=" * 60)
    logger.info("RSS FEED FETCH STARTING")
    logger.info("=" * 60)

    result = run_feed_fetch_job()

    logger.info("=" * 60)
    logger.info("JOB SUMMARY")
    logger.info("=" * 60)
    if not result['success']:
        logger.error(f"JOB FAILED: {result['error']}")
        return 1

    logger.info(f"Sources checked:   {result['sources_checked']}")
    logger.info(f"Successful:        {result['successful']}")
    logger.info(f"Failed:            {result['failed']}")
    logger.info(f"New articles:      {result['total_new_articles']}")
    logger.info(f"Duration:          {result['duration_seconds']:.1f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
