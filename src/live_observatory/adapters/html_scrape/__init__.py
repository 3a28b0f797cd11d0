"""Watch-page scrape adapter package."""

from live_observatory.adapters.html_scrape.adapter import HtmlScrapeAdapter

__all__ = ["HtmlScrapeAdapter"]
