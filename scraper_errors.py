"""
Errors raised while scraping a page for images.

Every failure is terminal for the invocation; the scraper turns them into a
failure result instead of retrying.
"""


class ScrapeError(Exception):
    """Base class for all scrape failures"""


class MissingTarget(ScrapeError):
    def __init__(self, message="URL is required"):
        super().__init__(message)


class InvalidTarget(ScrapeError):
    def __init__(self, url, reason):
        self.url = url
        super().__init__(f"invalid URL {url!r}: {reason}")


class TooManyRedirects(ScrapeError):
    def __init__(self, max_redirects):
        self.max_redirects = max_redirects
        super().__init__(f"stopped after {max_redirects} redirects")


class NetworkError(ScrapeError):
    """Connection, TLS or timeout failure while sending the request"""


class HTTPError(ScrapeError):
    def __init__(self, status):
        self.status = status
        super().__init__(f"HTTP {status}")


class ReadError(ScrapeError):
    """Failure while draining or decoding the response body"""


class UsageError(ScrapeError):
    """Invalid command line arguments"""
