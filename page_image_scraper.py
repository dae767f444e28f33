#!/usr/bin/env python3
"""
Page Image Scraper

Fetches a single web page, extracts the image URLs referenced in its markup
and prints the outcome as one JSON object.
"""

import sys
import json
import argparse
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from image_extractor import ImageExtractor
from page_fetcher import PageFetcher
from scraper_errors import ScrapeError, UsageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScrapeResult:
    """Outcome of one scrape: either the images found or an error message"""

    success: bool
    images: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def ok(cls, images):
        return cls(success=True, images=list(images))

    @classmethod
    def failure(cls, message):
        return cls(success=False, error=message)

    def to_dict(self):
        result = {'success': self.success}
        if self.images:
            result['images'] = list(self.images)
        if self.error:
            result['error'] = self.error
        return result

    def to_json(self):
        return json.dumps(self.to_dict(), ensure_ascii=False)


def scrape_page(url, fetcher=None, extractor=None):
    """Fetch url and extract the images it references

    Args:
        url (str): Address of the page to scrape
        fetcher (PageFetcher): Fetcher to use, a default one if omitted
        extractor (ImageExtractor): Extractor to use, a default one if omitted

    Returns:
        ScrapeResult: Success with the image list, or failure with the error message
    """
    fetcher = fetcher or PageFetcher()
    extractor = extractor or ImageExtractor()

    try:
        html = fetcher.fetch(url)
    except ScrapeError as e:
        logger.error(f"Failed to fetch {url}: {e}")
        return ScrapeResult.failure(str(e))

    return ScrapeResult.ok(extractor.extract(html, url))


class ResultArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that keeps stdout free for the result

    Help and usage go to stderr, and argument errors raise UsageError
    instead of exiting so they can be reported as a failure result.
    """

    def print_usage(self, file=None):
        super().print_usage(file or sys.stderr)

    def print_help(self, file=None):
        super().print_help(file or sys.stderr)

    def error(self, message):
        raise UsageError(message)


def main(argv=None):
    """Main function to handle command line arguments"""
    parser = ResultArgumentParser(
        description="Extract image URLs from a single web page"
    )

    parser.add_argument("url", nargs="?", help="URL of the page to scrape")

    parser.add_argument(
        "--url",
        dest="url_option",
        help="URL of the page to scrape, alternative to the positional argument"
    )

    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=1,
        help="Number of threads applying pattern rules (default: 1)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        parser.print_usage()
        sys.stdout.write(ScrapeResult.failure(str(e)).to_json() + "\n")
        sys.stdout.flush()
        return 0

    # Logs go to stderr, stdout only carries the result
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    url = args.url_option or args.url
    try:
        result = scrape_page(url, extractor=ImageExtractor(max_workers=args.workers))
    except Exception as e:
        logger.exception(f"Unexpected error scraping {url}")
        result = ScrapeResult.failure(str(e) or e.__class__.__name__)

    sys.stdout.write(result.to_json() + "\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
