"""
Image Extractor

Pulls candidate image URLs out of raw page markup with a fixed set of pattern
rules, then filters and resolves them into a set of absolute URLs.
"""

import re
import logging
import threading
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

PatternRule = namedtuple('PatternRule', ['name', 'pattern', 'is_srcset'])

PATTERN_RULES = [
    PatternRule('img-src', re.compile(r'<img[^>]+src=["\']([^"\']+)["\']'), False),
    PatternRule('srcset', re.compile(r'srcset=["\']([^"\']+)["\']'), True),
    PatternRule(
        'og-image',
        re.compile(r'<meta[^>]+property=["\']og:image["\'][^>]+content=["\']([^"\']+)["\']'),
        False,
    ),
    PatternRule(
        'og-image-reversed',
        re.compile(r'<meta[^>]+content=["\']([^"\']+)["\'][^>]+property=["\']og:image["\']'),
        False,
    ),
    PatternRule(
        'background-image',
        re.compile(r'background(?:-image)?:\s*url\(["\']?([^"\')]+)["\']?\)'),
        False,
    ),
    # Direct image links, common on forums
    PatternRule(
        'image-link',
        re.compile(r'href=["\'](https?://[^"\']+\.(?:jpg|jpeg|png|gif|webp))["\']'),
        False,
    ),
    # Bare imgur links anywhere in the text
    PatternRule(
        'imgur',
        re.compile(r'(https?://(?:i\.)?imgur\.com/[a-zA-Z0-9]+\.(?:jpg|jpeg|png|gif|webp))'),
        False,
    ),
]

# Substrings that mark tracking pixels and layout placeholders
PLACEHOLDER_MARKERS = ('1x1', 'pixel', 'tracking', 'spacer')


class ImageSet:
    """Insert-only set of image URLs, safe to fill from several threads"""

    def __init__(self):
        self._urls = set()
        self._lock = threading.Lock()

    def add(self, url):
        """Add url, returning True if it was not already present"""
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url):
        return url in self._urls

    def __len__(self):
        return len(self._urls)

    def to_list(self):
        # Read only once every writer has finished
        return sorted(self._urls)


def split_srcset(value):
    """Return the URL part of every entry in a srcset value

    "a.png 1x, b.png 2x" -> ["a.png", "b.png"]
    """
    urls = []
    for entry in value.split(','):
        fields = entry.strip().split()
        if fields:
            urls.append(fields[0])
    return urls


def normalize_candidate(candidate, base_url):
    """Turn a raw candidate into an absolute image URL

    Args:
        candidate (str): URL-like string taken from the markup
        base_url (ParseResult): Parsed address of the page it came from

    Returns:
        str or None: The absolute URL, or None if the candidate is rejected
    """
    url = candidate.strip()
    if not url:
        return None

    # Skip data URLs and tiny tracking images
    if url.startswith('data:') or any(marker in url for marker in PLACEHOLDER_MARKERS):
        return None

    # Protocol-relative
    if url.startswith('//'):
        url = 'https:' + url

    # Root-relative
    if url.startswith('/'):
        host = base_url.netloc.rpartition('@')[2]
        url = f"{base_url.scheme}://{host}{url}"

    # Skip javascript:, mailto:, bare relative paths and the like
    if not url.startswith('http'):
        return None

    return url


class ImageExtractor:
    """Applies every pattern rule to a page and collects the image URLs"""

    def __init__(self, rules=None, max_workers=1):
        """
        Args:
            rules (list): Pattern rules to apply, PATTERN_RULES by default
            max_workers (int): Rules run concurrently on a thread pool when greater than 1
        """
        self.rules = list(rules) if rules is not None else list(PATTERN_RULES)
        self.max_workers = max_workers

    def extract(self, html, base_url):
        """Extract image URLs from HTML content

        Args:
            html (str): Page markup
            base_url (str): Address of the page, used to resolve root-relative URLs

        Returns:
            list: Deduplicated absolute image URLs; order carries no meaning
        """
        if not html:
            return []

        parsed_base = urlparse(base_url)
        image_set = ImageSet()

        if self.max_workers and self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [
                    executor.submit(self._apply_rule, rule, html, parsed_base, image_set)
                    for rule in self.rules
                ]
                for future in futures:
                    future.result()
        else:
            for rule in self.rules:
                self._apply_rule(rule, html, parsed_base, image_set)

        images = image_set.to_list()
        logger.info(f"Found {len(images)} images on {base_url}")
        return images

    def _apply_rule(self, rule, html, base_url, image_set):
        added = 0
        for match in rule.pattern.finditer(html):
            value = match.group(1)
            candidates = split_srcset(value) if rule.is_srcset else [value]
            for candidate in candidates:
                url = normalize_candidate(candidate, base_url)
                if url and image_set.add(url):
                    added += 1
        logger.debug(f"Rule {rule.name} added {added} new images")
        return added


def extract_images(html, base_url, max_workers=1):
    """Extract image URLs from html using the default pattern rules"""
    return ImageExtractor(max_workers=max_workers).extract(html, base_url)
