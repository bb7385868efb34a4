"""
Tests for the web retrieval module.
"""

from unittest import mock

import pytest
import requests

from lienx.config import FetchConfig
from lienx.model import FetchError
from lienx.web import Fetcher, FetchResponse, resolve_url, with_download_param


def make_response(status_code=200, content=b"<html></html>", content_type="text/html", url="https://example.gov/"):
    """Create a mock requests response."""
    response = mock.MagicMock()
    response.status_code = status_code
    response.content = content
    response.url = url
    response.headers = {"Content-Type": content_type}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            f"{status_code} Error", response=response
        )
    return response


def make_fetcher(*responses):
    """Create a fetcher over a mocked session."""
    session = mock.MagicMock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return Fetcher(FetchConfig(max_retries=2, backoff_factor=1.0), session=session), session


def test_fetch_success():
    """Test a successful fetch."""
    fetcher, session = make_fetcher(make_response(content=b"%PDF-1.4", content_type="application/pdf"))

    response = fetcher.fetch("https://example.gov/sale.pdf")

    assert response.is_pdf
    assert response.content == b"%PDF-1.4"
    kwargs = session.get.call_args[1]
    assert kwargs["timeout"] == 30.0
    assert kwargs["allow_redirects"] is True


def test_fetcher_sets_browser_headers():
    """Test the session carries a browser-like identity."""
    fetcher, session = make_fetcher()

    assert session.headers["User-Agent"].startswith("Mozilla/5.0")
    assert "application/pdf" in session.headers["Accept"]


@mock.patch("lienx.web.time.sleep")
def test_fetch_retries_connection_errors(mock_sleep):
    """Test connection errors are retried with backoff."""
    fetcher, session = make_fetcher(
        requests.exceptions.ConnectionError("reset"),
        requests.exceptions.Timeout("slow"),
        make_response(),
    )

    response = fetcher.fetch("https://example.gov/")

    assert response.is_html
    assert session.get.call_count == 3
    assert mock_sleep.call_args_list == [mock.call(1.0), mock.call(2.0)]


@mock.patch("lienx.web.time.sleep")
def test_fetch_client_error_not_retried(mock_sleep):
    """Test a 404 fails immediately."""
    fetcher, session = make_fetcher(make_response(status_code=404))

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("https://example.gov/missing.pdf")

    assert "missing.pdf" in str(excinfo.value)
    assert session.get.call_count == 1
    mock_sleep.assert_not_called()


@mock.patch("lienx.web.time.sleep")
def test_fetch_server_error_exhausts_retries(mock_sleep):
    """Test a 500 is retried until attempts run out."""
    fetcher, session = make_fetcher(*[make_response(status_code=500) for _ in range(3)])

    with pytest.raises(FetchError):
        fetcher.fetch("https://example.gov/")

    assert session.get.call_count == 3
    assert mock_sleep.call_count == 2


def test_fetch_response_content_sniffing():
    """Test the document type is recognized without a content type."""
    pdf = FetchResponse(url="u", content=b"  %PDF-1.7 ...")
    html = FetchResponse(url="u", content=b"<!DOCTYPE html><html></html>")
    other = FetchResponse(url="u", content=b"plain", content_type="text/plain")

    assert pdf.is_pdf and not pdf.is_html
    assert html.is_html and not html.is_pdf
    assert not other.is_pdf and not other.is_html


def test_fetch_response_text_replaces_bad_bytes():
    """Test decoding tolerates invalid UTF-8."""
    assert FetchResponse(url="u", content=b"caf\xe9").text == "caf�"


def test_resolve_url():
    """Test resolving relative links."""
    assert resolve_url("https://example.gov/tax/sales/", "../docs/sale.pdf") == "https://example.gov/tax/docs/sale.pdf"
    assert resolve_url("https://example.gov/tax/", " /list.pdf ") == "https://example.gov/list.pdf"
    assert resolve_url("https://example.gov/", "https://cdn.example.com/a.pdf") == "https://cdn.example.com/a.pdf"


def test_with_download_param():
    """Test adding the download parameter."""
    assert with_download_param("https://example.gov/doc/123") == "https://example.gov/doc/123?download=true"
    assert with_download_param("https://example.gov/doc?id=1") == "https://example.gov/doc?id=1&download=true"
    assert with_download_param("https://example.gov/doc?download=true") == "https://example.gov/doc?download=true"
