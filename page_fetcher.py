"""
Page Fetcher

Retrieves a single page over HTTP(S) with a browser-like request profile,
TLS pinned to 1.2-1.3 and bounded, cookie-preserving redirect following.
"""

import re
import ssl
import time
import logging
from urllib.parse import urlparse, urljoin

import cloudscraper
import requests
from requests import certs
from requests.adapters import HTTPAdapter
from cloudscraper.exceptions import CloudflareException
from bs4 import UnicodeDammit

from scraper_errors import (
    HTTPError,
    InvalidTarget,
    MissingTarget,
    NetworkError,
    ReadError,
    TooManyRedirects,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8'
# Bulletin boards render localized content based on this
DEFAULT_ACCEPT_LANGUAGE = 'zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7'

# Sites that hide every page behind an age interstitial unless this cookie is sent
AGE_GATED_DOMAINS = {
    'ptt.cc': {'over18': '1'},
}

# List of known domains that use Cloudflare protection
CLOUDFLARE_DOMAINS = ('imfdb.org', 'wikia.com', 'fandom.com')

REDIRECT_STATUSES = (301, 302, 303, 307, 308)

CHARSET_PATTERN = re.compile(r'charset=["\']?([\w.:-]+)', re.IGNORECASE)


def build_ssl_context():
    """Create a verifying SSL context limited to TLS 1.2 and 1.3"""
    context = ssl.create_default_context(cafile=certs.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_3
    return context


def parse_target(url):
    """Parse and validate the address to scrape

    Args:
        url (str): Address supplied by the caller

    Returns:
        ParseResult: The parsed address

    Raises:
        MissingTarget: If no address was given
        InvalidTarget: If the address is not an absolute http(s) URL
    """
    if not url or not url.strip():
        raise MissingTarget()

    try:
        parsed_url = urlparse(url)
        # Accessing the port validates it
        parsed_url.port
    except ValueError as e:
        raise InvalidTarget(url, e) from e

    if parsed_url.scheme not in ('http', 'https'):
        raise InvalidTarget(url, "scheme must be http or https")
    if not parsed_url.hostname:
        raise InvalidTarget(url, "missing host")
    return parsed_url


def decode_body(body, content_type=''):
    """Decode a response body, preferring the charset declared by the server

    Falls back to the document's own meta charset and then to detection.
    """
    if not body:
        return ''

    match = CHARSET_PATTERN.search(content_type or '')
    declared = [match.group(1)] if match else []
    dammit = UnicodeDammit(body, known_definite_encodings=declared, is_html=True)
    if dammit.unicode_markup is None:
        raise ReadError("unable to decode response body")

    logger.debug(f"Decoded body as {dammit.original_encoding}")
    return dammit.unicode_markup


class TLSAdapter(HTTPAdapter):
    """HTTPAdapter pinned to TLS 1.2-1.3 that drops connections idle for too long"""

    def __init__(self, ssl_context=None, idle_timeout=30.0, **kwargs):
        # Must be set before HTTPAdapter.__init__ builds the pool manager
        self.ssl_context = ssl_context or build_ssl_context()
        self.idle_timeout = idle_timeout
        self._last_used = None
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs['ssl_context'] = self.ssl_context
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)

    def send(self, request, **kwargs):
        now = time.monotonic()
        if self._last_used is not None and now - self._last_used > self.idle_timeout:
            logger.debug(f"Dropping pooled connections idle for over {self.idle_timeout}s")
            self.poolmanager.clear()
        try:
            return super().send(request, **kwargs)
        finally:
            self._last_used = time.monotonic()


class PageFetcher:
    """Fetches a single page and returns its markup as text"""

    def __init__(self, timeout=15.0, handshake_timeout=10.0, max_redirects=10,
                 pool_size=10, idle_timeout=30.0, user_agent=None,
                 accept_language=None, cookies=None, cloudflare_domains=None,
                 session=None):
        """Initialize the fetcher with its transport and request profile

        Args:
            timeout (float): Overall deadline in seconds covering every redirect hop and the body
            handshake_timeout (float): Connect timeout in seconds, TCP and TLS handshake included
            max_redirects (int): Number of redirects followed before giving up
            pool_size (int): Maximum number of pooled idle connections
            idle_timeout (float): Seconds after which pooled connections are discarded
            user_agent (str): Custom user agent string
            accept_language (str): Custom Accept-Language header value
            cookies (dict): Extra cookies sent with the original request and every redirect
            cloudflare_domains (list): Domains fetched through cloudscraper
            session (requests.Session): Preconfigured session to use instead of building one
        """
        self.timeout = timeout
        self.handshake_timeout = handshake_timeout
        self.max_redirects = max_redirects
        self.pool_size = pool_size
        self.idle_timeout = idle_timeout
        self.cookies = dict(cookies or {})
        if cloudflare_domains is None:
            cloudflare_domains = CLOUDFLARE_DOMAINS
        self.cloudflare_domains = tuple(cloudflare_domains)
        self.session = session

        self.headers = {
            'User-Agent': user_agent or DEFAULT_USER_AGENT,
            'Accept': DEFAULT_ACCEPT,
            'Accept-Language': accept_language or DEFAULT_ACCEPT_LANGUAGE,
            'Accept-Encoding': 'gzip, deflate',
            'Connection': 'keep-alive',
        }

    def fetch(self, url):
        """Fetch the page at url

        Args:
            url (str): Address of the page

        Returns:
            str: The decoded response body

        Raises:
            ScrapeError: Any of its subclasses, depending on where the fetch failed
        """
        parsed_url = parse_target(url)
        host = parsed_url.hostname.lower()
        cookies = self._cookies_for(host)

        session = self.session or self.build_session(host)
        deadline = time.monotonic() + self.timeout
        logger.info(f"Fetching {url}")
        try:
            response = self._follow_redirects(session, url, cookies, deadline)
            try:
                if response.status_code != 200:
                    logger.warning(f"{url} answered with HTTP {response.status_code}")
                    raise HTTPError(response.status_code)
                html = self._read_text(response, url, deadline)
            finally:
                response.close()
        finally:
            if session is not self.session:
                session.close()

        logger.info(f"Fetched {len(html)} characters from {url}")
        return html

    def build_session(self, host):
        """Create a session whose HTTPS transport is limited to TLS 1.2-1.3

        Known Cloudflare-protected hosts get a cloudscraper session so the
        request can pass the browser check. Its cipher suite adapter is kept
        and only has its version bounds narrowed; other hosts get a plain
        session with TLSAdapter mounted.
        """
        if any(cf_domain in host for cf_domain in self.cloudflare_domains):
            logger.info(f"Using cloudscraper for known Cloudflare-protected domain: {host}")
            session = cloudscraper.create_scraper()
            ssl_context = session.get_adapter('https://').ssl_context
            ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
            ssl_context.maximum_version = ssl.TLSVersion.TLSv1_3
            return session

        session = requests.Session()
        adapter = TLSAdapter(
            idle_timeout=self.idle_timeout,
            pool_connections=self.pool_size,
            pool_maxsize=self.pool_size,
        )
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return session

    def _cookies_for(self, host):
        cookies = dict(self.cookies)
        for domain, consent in AGE_GATED_DOMAINS.items():
            if domain in host:
                logger.info(f"Sending age consent cookie to {host}")
                cookies.update(consent)
        return cookies

    def _follow_redirects(self, session, url, cookies, deadline):
        """Send the request and follow redirects by hand

        Every hop carries the cookies of the original request.
        """
        current_url = url
        redirects = 0
        while True:
            response = self._send(session, current_url, cookies, deadline)
            location = response.headers.get('Location')
            if response.status_code not in REDIRECT_STATUSES or not location:
                return response

            response.close()
            if redirects >= self.max_redirects:
                logger.warning(f"Giving up on {url} after {redirects} redirects")
                raise TooManyRedirects(self.max_redirects)

            redirects += 1
            current_url = urljoin(current_url, location)
            logger.debug(f"Redirect {redirects}/{self.max_redirects}: {current_url}")

    def _send(self, session, url, cookies, deadline):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise NetworkError(f"request to {url} timed out after {self.timeout}s")

        try:
            return session.get(
                url,
                headers=self.headers,
                cookies=cookies or None,
                timeout=(min(self.handshake_timeout, remaining), remaining),
                allow_redirects=False,
                stream=True,
            )
        except (requests.exceptions.InvalidURL,
                requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema) as e:
            raise InvalidTarget(url, e) from e
        except requests.exceptions.Timeout as e:
            logger.warning(f"Timed out fetching {url}: {e}")
            raise NetworkError(f"request to {url} timed out: {e}") from e
        except (requests.RequestException, CloudflareException) as e:
            logger.warning(f"Error fetching {url}: {e}")
            raise NetworkError(f"request to {url} failed: {e}") from e

    def _read_text(self, response, url, deadline):
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=8192):
                if time.monotonic() > deadline:
                    raise ReadError(f"error reading body from {url}: timed out after {self.timeout}s")
                if chunk:  # Filter out keep-alive chunks
                    chunks.append(chunk)
        except requests.RequestException as e:
            logger.warning(f"Error reading body from {url}: {e}")
            raise ReadError(f"error reading body from {url}: {e}") from e

        return decode_body(b''.join(chunks), response.headers.get('Content-Type', ''))
