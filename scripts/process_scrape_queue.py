#!/usr/bin/env python
"""
Scrape Queue Job

Runs every 5 minutes via cron to scrape full article bodies for a small
batch of ingested items.

Usage:
    python scripts/process_scrape_queue.py
    python scripts/process_scrape_queue.py --batch-size 10
    python scripts/process_scrape_queue.py --retry-failed 5   # re-queue failed scrapes first
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from newsdesk.services.content_scraper import retry_failed_scrapes
from newsdesk.services.scheduler import DEFAULT_SCRAPE_BATCH_SIZE, run_scrape_job

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
logger = logging.getLogger('process_scrape_queue')


def main():
    parser = argparse.ArgumentParser(description='Scrape full content for ingested items')
    parser.add_argument('--batch-size', type=int, default=DEFAULT_SCRAPE_BATCH_SIZE,
                        help='Items to scrape this run')
    parser.add_argument('--retry-failed', type=int, default=0, metavar='N',
                        help='Clear the error on the N oldest failed scrapes before running')
    args = parser.parse_args()

    if args.retry_failed > 0:
        try:
            requeued = retry_failed_scrapes(args.retry_failed)
            logger.info(f"Re-queued {requeued} failed scrapes")
        except Exception as e:
            logger.error(f"Could not re-queue failed scrapes: {e}")

    result = run_scrape_job(args.batch_size)
    if not result['success']:
        logger.error(f"JOB FAILED: {result['error']}")
        return 1

    logger.info(f"Scraped {result['successful']}/{result['processed']} in {result['duration_seconds']:.1f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
