"""Pytest fixtures for the page image scraper tests."""

from unittest.mock import MagicMock

import pytest
from requests.structures import CaseInsensitiveDict


def build_response(status_code=200, body=b"", headers=None, chunks=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})
    if chunks is None:
        chunks = [body] if body else []
    response.iter_content.side_effect = lambda chunk_size=1: iter(chunks)
    return response


def redirect_to(location, status_code=302):
    return build_response(status_code=status_code, headers={"Location": location})


@pytest.fixture
def make_response():
    return build_response


@pytest.fixture
def make_redirect():
    return redirect_to


@pytest.fixture
def mock_session():
    return MagicMock()


@pytest.fixture
def gallery_html():
    return """
    <html>
    <head>
        <meta property="og:image" content="https://site.example/cover.jpg">
        <meta content="//cdn.example.com/share.png" property="og:image">
    </head>
    <body>
        <img src="https://site.example/cover.jpg" alt="cover">
        <img class="thumb" src="/img/a.png">
        <img srcset="/img/small.png 1x, /img/large.png 2x">
        <img src="data:image/gif;base64,R0lGODlhAQABAAAAACw=">
        <img src="https://ads.example/tracking.gif">
        <div style="background-image: url('/img/hero.webp')"></div>
        <a href="https://photos.example/full.jpeg">full size</a>
        <a href="https://photos.example/page.html">not an image</a>
        <p>see https://i.imgur.com/AbC123.png for more</p>
    </body>
    </html>
    """
