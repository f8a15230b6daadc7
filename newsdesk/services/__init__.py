"""
Ingestion and Curation Services

This package contains the services of the news ingestion pipeline:
- relevance_filter: Dedup, tiering, scoring and burst control for feed entries
- category_classifier: Keyword-based category detection for mixed sources
- feed_fetcher: Fetch RSS/Atom feeds and store ingested items
- content_scraper: Scrape full article bodies from source pages
- ai_rewriter: Journalistic rewrites with a local Ollama model
- automation: Rewrite → publish → social state machine
- moderation: Manual approve/reject of ingested items
- notifications: Operator-facing system notifications
- webhook: Fire-and-forget publish notification
- scheduler: Entry points for the cron jobs
"""
