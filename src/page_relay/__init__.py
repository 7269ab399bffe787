"""Page Relay: quota-aware scraping relay with structured page extraction."""

__version__ = "0.1.0"
