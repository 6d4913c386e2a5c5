"""Tests for Fetcher — scheme validation, SSRF guard, probe, retrieval, conversion."""

from __future__ import annotations

import socket
import urllib.error
import urllib.request
from unittest.mock import MagicMock, patch

import pytest

from ledgerkb.errors import UnreachableSource
from ledgerkb.ingest.fetcher import Fetcher, _TooManyRedirects

_HTML = (
    "<html><head><title>T</title><style>p{}</style></head>"
    "<body><nav>menu</nav><h1>Heading</h1><p>Body text here.</p>"
    "<script>alert(1)</script><footer>foot</footer></body></html>"
)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _patch_getaddrinfo(ip: str):
    """Return a context manager that makes getaddrinfo resolve to *ip*."""
    addr_info = [(None, None, None, None, (ip, 0))]
    return patch("ledgerkb.ingest.fetcher.socket.getaddrinfo", return_value=addr_info)


def _response(body: bytes = b"", content_type: str = "text/html; charset=utf-8") -> MagicMock:
    resp = MagicMock()
    resp.headers = {"Content-Type": content_type}
    resp.read.side_effect = lambda n=-1: body if n < 0 else body[:n]
    return resp


def _http_error(url: str, code: int) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url, code, "error", {}, None)


def _serve(get_response=None, head_error=None, get_error=None):
    """Patch Fetcher._open with canned HEAD/GET behaviour."""
    methods: list[str] = []

    def _open(request):
        methods.append(request.get_method())
        if request.get_method() == "HEAD":
            if head_error is not None:
                raise head_error
            return _response()
        if get_error is not None:
            raise get_error
        return get_response

    return patch.object(Fetcher, "_open", side_effect=_open), methods


# ------------------------------------------------------------------
# Scheme validation
# ------------------------------------------------------------------


def test_scheme_https_ok():
    Fetcher._validate_scheme("https://example.com/page")  # no exception


def test_scheme_ftp_raises():
    with pytest.raises(UnreachableSource, match="scheme"):
        Fetcher._validate_scheme("ftp://example.com")


def test_scheme_file_raises():
    with pytest.raises(UnreachableSource, match="scheme"):
        Fetcher._validate_scheme("file:///etc/passwd")


def test_missing_hostname_raises():
    with pytest.raises(UnreachableSource, match="hostname"):
        Fetcher._validate_scheme("https://")


# ------------------------------------------------------------------
# SSRF guard
# ------------------------------------------------------------------


def test_ssrf_public_ip_ok():
    with _patch_getaddrinfo("93.184.216.34"):
        Fetcher._check_ssrf("https://example.com")  # no exception


@pytest.mark.parametrize("ip", ["127.0.0.1", "10.0.0.1", "192.168.1.1", "169.254.169.254", "::1"])
def test_ssrf_private_ranges_blocked(ip):
    with _patch_getaddrinfo(ip):
        with pytest.raises(UnreachableSource, match="private"):
            Fetcher._check_ssrf("https://internal.example")


def test_ssrf_dns_failure_is_unreachable():
    with patch(
        "ledgerkb.ingest.fetcher.socket.getaddrinfo",
        side_effect=socket.gaierror("Name or service not known"),
    ):
        with pytest.raises(UnreachableSource, match="DNS"):
            Fetcher._check_ssrf("https://no-such-host.invalid")


def test_allow_private_skips_guard():
    ctx, _ = _serve(get_response=_response(b"local", "text/plain"))
    with ctx, patch("ledgerkb.ingest.fetcher.socket.getaddrinfo") as gai:
        doc = Fetcher(allow_private=True).fetch("http://localhost:8000/doc")
    gai.assert_not_called()
    assert doc.text == "local"


# ------------------------------------------------------------------
# Redirects
# ------------------------------------------------------------------


def _redirect(handler, newurl: str):
    request = urllib.request.Request("https://example.com/a")
    return handler.redirect_request(request, None, 302, "Found", {}, newurl)


def _handler_for(fetcher: Fetcher):
    """Return the redirect handler *fetcher* installs on its opener."""
    with patch("ledgerkb.ingest.fetcher.urllib.request.build_opener") as build:
        fetcher._open(urllib.request.Request("https://example.com/a"))
    return build.call_args.args[0]


def test_redirect_to_private_address_blocked():
    handler = _handler_for(Fetcher())
    with _patch_getaddrinfo("169.254.169.254"):
        with pytest.raises(UnreachableSource, match="private"):
            _redirect(handler, "http://metadata.internal/latest/")


def test_redirect_to_public_address_followed():
    handler = _handler_for(Fetcher())
    with _patch_getaddrinfo("93.184.216.34"):
        followed = _redirect(handler, "https://example.org/b")
    assert isinstance(followed, urllib.request.Request)
    assert followed.full_url == "https://example.org/b"


def test_redirect_to_unsupported_scheme_blocked():
    handler = _handler_for(Fetcher())
    with pytest.raises(UnreachableSource, match="scheme"):
        _redirect(handler, "ftp://example.org/file")


def test_redirect_with_allow_private_skips_guard():
    handler = _handler_for(Fetcher(allow_private=True))
    with patch("ledgerkb.ingest.fetcher.socket.getaddrinfo") as gai:
        followed = _redirect(handler, "http://localhost:8000/b")
    gai.assert_not_called()
    assert followed.full_url == "http://localhost:8000/b"


def test_redirect_limit_exceeded():
    handler = _handler_for(Fetcher(max_redirects=1, allow_private=True))
    _redirect(handler, "http://localhost:8000/b")
    with pytest.raises(_TooManyRedirects):
        _redirect(handler, "http://localhost:8000/c")


# ------------------------------------------------------------------
# fetch()
# ------------------------------------------------------------------


def test_fetch_html_converted_to_text():
    ctx, methods = _serve(get_response=_response(_HTML.encode()))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        doc = Fetcher().fetch("https://example.com/doc")

    assert methods == ["HEAD", "GET"]
    assert doc.content_type == "text/html"
    assert "Heading" in doc.text
    assert "Body text here." in doc.text
    assert "alert" not in doc.text
    assert "menu" not in doc.text


def test_fetch_plain_text_passthrough():
    ctx, _ = _serve(get_response=_response(b"line one\nline two", "text/plain"))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        doc = Fetcher().fetch("https://example.com/notes.txt")
    assert doc.text == "line one\nline two"


def test_fetch_head_not_allowed_still_fetches():
    ctx, methods = _serve(
        get_response=_response(b"ok", "text/plain"),
        head_error=_http_error("https://example.com/doc", 405),
    )
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        doc = Fetcher().fetch("https://example.com/doc")
    assert methods == ["HEAD", "GET"]
    assert doc.text == "ok"


def test_fetch_head_404_is_unreachable():
    ctx, methods = _serve(head_error=_http_error("https://example.com/missing", 404))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        with pytest.raises(UnreachableSource, match="404"):
            Fetcher().fetch("https://example.com/missing")
    assert methods == ["HEAD"]


def test_fetch_connection_refused_is_unreachable():
    ctx, _ = _serve(head_error=urllib.error.URLError(ConnectionRefusedError(111, "refused")))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        with pytest.raises(UnreachableSource) as excinfo:
            Fetcher().fetch("https://example.com/doc")
    assert excinfo.value.url == "https://example.com/doc"
    assert excinfo.value.stage == "fetching"


def test_fetch_get_error_is_unreachable():
    ctx, _ = _serve(get_error=_http_error("https://example.com/doc", 500))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        with pytest.raises(UnreachableSource, match="HTTP 500"):
            Fetcher().fetch("https://example.com/doc")


def test_fetch_timeout_is_unreachable():
    ctx, _ = _serve(get_error=TimeoutError("timed out"))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        with pytest.raises(UnreachableSource, match="timed out"):
            Fetcher(timeout=1).fetch("https://example.com/slow")


def test_fetch_oversized_body_rejected():
    ctx, _ = _serve(get_response=_response(b"x" * 101, "text/plain"))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        with pytest.raises(UnreachableSource, match="exceeds 100 bytes"):
            Fetcher(max_bytes=100).fetch("https://example.com/big")


def test_fetch_unsupported_content_type_yields_empty_text():
    ctx, _ = _serve(get_response=_response(b"%PDF-1.7", "application/pdf"))
    with ctx, _patch_getaddrinfo("93.184.216.34"):
        doc = Fetcher().fetch("https://example.com/paper.pdf")
    assert doc.content_type == "application/pdf"
    assert doc.text == ""


def test_fetch_private_address_never_connects():
    ctx, methods = _serve(get_response=_response(b"secret", "text/plain"))
    with ctx, _patch_getaddrinfo("169.254.169.254"):
        with pytest.raises(UnreachableSource):
            Fetcher().fetch("http://metadata.internal/latest")
    assert methods == []


# ------------------------------------------------------------------
# _to_plain_text()
# ------------------------------------------------------------------


def test_to_plain_text_strips_head_and_scripts():
    text = Fetcher._to_plain_text(_HTML.encode(), "text/html")
    assert "Body text here." in text
    assert "p{}" not in text
    assert "foot" not in text


def test_to_plain_text_invalid_utf8_replaced():
    text = Fetcher._to_plain_text(b"caf\xe9", "text/plain")
    assert text.startswith("caf")
