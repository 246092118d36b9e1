"""Amazon product and review monitoring: scraping, storage and violation scans."""

__version__ = "1.0.0"
