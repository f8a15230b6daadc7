#!/usr/bin/env python
"""
Seed Data Script

Creates missing tables, then seeds categories and feed sources from the
JSON files in data/.

Usage:
    python scripts/seed_data.py --categories   # Seed categories only
    python scripts/seed_data.py --sources      # Seed feed sources only
    python scripts/seed_data.py --all          # Seed everything

Idempotent: Running multiple times will not create duplicates.
"""

import argparse
import json
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from newsdesk.database import SessionLocal, init_db
from newsdesk.models import Category, FeedSource, SourceStatus

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger('seed_data')

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'data')


def load_json(filename: str) -> list:
    """Load JSON file from data directory."""
    filepath = os.path.join(DATA_DIR, filename)
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


def seed_categories():
    session = SessionLocal()
    created = 0
    skipped = 0

    try:
        categories = load_json('categories.json')
        logger.info(f"Loading {len(categories)} categories from categories.json")

        for category_data in categories:
            existing = session.query(Category).filter_by(slug=category_data['slug']).first()
            if existing:
                skipped += 1
                continue

            session.add(Category(name=category_data['name'], slug=category_data['slug']))
            created += 1
            logger.info(f"Created category: {category_data['slug']}")

        session.commit()
        logger.info(f"Categories seeding complete: {created} created, {skipped} skipped")

    except FileNotFoundError:
        logger.error("data/categories.json not found - please create it first")
        raise
    except Exception as e:
        logger.error(f"Error seeding categories: {e}")
        session.rollback()
        raise
    finally:
        session.close()

    return created, skipped


def seed_sources():
    """Seed feed sources; the category is referenced by slug."""
    session = SessionLocal()
    created = 0
    skipped = 0

    try:
        sources = load_json('sources.json')
        logger.info(f"Loading {len(sources)} sources from sources.json")

        for source_data in sources:
            existing = session.query(FeedSource).filter_by(feed_url=source_data['feed_url']).first()
            if existing:
                logger.debug(f"Source '{source_data['name']}' already exists, skipping")
                skipped += 1
                continue

            category = None
            if source_data.get('category'):
                category = session.query(Category).filter_by(slug=source_data['category']).first()
                if category is None:
                    logger.warning(f"Unknown category '{source_data['category']}' for {source_data['name']}")

            source = FeedSource(
                name=source_data['name'],
                feed_url=source_data['feed_url'],
                website_url=source_data.get('website_url'),
                category_id=category.id if category else None,
                status=SourceStatus.ACTIVE,
                is_active=source_data.get('is_active', True),
                auto_approve=source_data.get('auto_approve', False),
                fetch_interval=source_data.get('fetch_interval', 15),
                tier=source_data.get('tier'),
            )
            session.add(source)
            created += 1
            logger.info(f"Created source: {source_data['name']}")

        session.commit()
        logger.info(f"Sources seeding complete: {created} created, {skipped} skipped")

    except FileNotFoundError:
        logger.error("data/sources.json not found - please create it first")
        raise
    except Exception as e:
        logger.error(f"Error seeding sources: {e}")
        session.rollback()
        raise
    finally:
        session.close()

    return created, skipped


def main():
    parser = argparse.ArgumentParser(description='Seed database with initial data')
    parser.add_argument('--categories', action='store_true', help='Seed categories')
    parser.add_argument('--sources', action='store_true', help='Seed feed sources')
    parser.add_argument('--all', action='store_true', help='Seed everything')

    args = parser.parse_args()

    # Default to --all if nothing specified
    if not (args.categories or args.sources or args.all):
        args.all = True

    try:
        init_db()

        if args.categories or args.all:
            logger.info("=" * 40)
            logger.info("SEEDING CATEGORIES")
            logger.info("=" * 40)
            seed_categories()

        if args.sources or args.all:
            logger.info("=" * 40)
            logger.info("SEEDING SOURCES")
            logger.info("=" * 40)
            seed_sources()

        logger.info("=" * 40)
        logger.info("SEEDING COMPLETE")
        logger.info("=" * 40)
        return 0

    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
