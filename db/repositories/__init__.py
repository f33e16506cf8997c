"""
Repository layer exports.
"""

from db.repositories.crawl_run_repository import CrawlRunRepository

__all__ = [
    "CrawlRunRepository",
]
