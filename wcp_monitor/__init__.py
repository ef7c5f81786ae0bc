"""
New-product monitoring service package.

This package contains modules for scraping the West Coast Products
"new products" listing, caching product images, persisting seen products,
notifying Slack and scheduling the monitoring cycle.
"""

__all__ = [
    "config",
    "detector",
    "errors",
    "images",
    "main",
    "notifier",
    "scheduler",
    "scraper",
    "store",
    "utils",
]
