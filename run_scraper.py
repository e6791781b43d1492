"""
Simple runner - just run: python run_scraper.py <jurisdiction>

Usage:
    python run_scraper.py md                      # Resume the Maryland crawl
    python run_scraper.py md --mode retry-failed  # Retry failed facilities
    python run_scraper.py ma --mode fresh         # Start fresh
"""
import sys

from facility_scraper.main import main


if __name__ == '__main__':
    sys.exit(main())
