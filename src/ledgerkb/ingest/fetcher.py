"""Fetcher — retrieve a contributed URL as plain text, with SSRF protection.

Pipeline:
- Scheme check: https:// and http:// only.
- SSRF guard: hostname is resolved and private/loopback/link-local ranges
  are refused before any connection is made, for the submitted URL and
  every redirect target (``allow_private`` disables it).
- Reachability probe: a HEAD request. 405/501 answers count as reachable.
- Retrieval: GET with timeout, redirect limit and body size cap.
- Conversion: text/html → BeautifulSoup + html2text, text/plain passes
  through, any other Content-Type degrades to empty text.

Every failure surfaces as ``UnreachableSource``. No retries here.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from ledgerkb.errors import UnreachableSource

logger = logging.getLogger(__name__)

_USER_AGENT = "ledgerkb/0.1"
_ALLOWED_SCHEMES = {"https", "http"}
_TEXT_CONTENT_TYPES = {"text/html", "application/xhtml+xml", "text/plain"}
# Host answered but does not implement HEAD.
_HEAD_UNSUPPORTED = {405, 501}

_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


@dataclass
class FetchedDocument:
    """A retrieved document reduced to plain text.

    Attributes:
        url: The requested URL.
        content_type: Response Content-Type without parameters.
        text: Plain text body; empty for unsupported content types.
    """

    url: str
    content_type: str
    text: str


class Fetcher:
    """Fetch a URL and convert it to plain text.

    Args:
        timeout: Seconds for connect + read, applied to both requests.
        max_bytes: Largest accepted response body.
        max_redirects: Redirects followed before giving up.
        allow_private: Skip the SSRF guard (local test networks only).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_bytes: int = 5 * 1024 * 1024,
        max_redirects: int = 3,
        allow_private: bool = False,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects
        self.allow_private = allow_private

    def fetch(self, url: str) -> FetchedDocument:
        """Return the document at *url* as plain text.

        Raises:
            UnreachableSource: Invalid URL, blocked address, network error,
                non-success status, timeout or oversized body.
        """
        self._validate_scheme(url)
        if not self.allow_private:
            self._check_ssrf(url)
        self._probe(url)
        raw, content_type = self._get(url)
        text = self._to_plain_text(raw, content_type)
        logger.debug("Fetched %s (%s, %d chars)", url, content_type, len(text))
        return FetchedDocument(url=url, content_type=content_type, text=text)

    # ------------------------------------------------------------------
    # URL checks
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise UnreachableSource(
                url, f"unsupported URL scheme '{parsed.scheme}' (only https:// and http://)"
            )
        if not parsed.hostname:
            raise UnreachableSource(url, "URL has no hostname")

    @staticmethod
    def _check_ssrf(url: str) -> None:
        """Resolve the hostname and refuse private/reserved IP ranges."""
        hostname = urllib.parse.urlparse(url).hostname or ""
        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise UnreachableSource(url, f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            try:
                ip = ipaddress.ip_address(addrinfo[4][0])
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise UnreachableSource(
                    url, f"resolves to private address ({ip}); internal addresses are not allowed"
                )

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _open(self, request: urllib.request.Request) -> HTTPResponse:
        guard = None if self.allow_private else self._check_ssrf
        opener = urllib.request.build_opener(_LimitedRedirectHandler(self.max_redirects, guard))
        return opener.open(request, timeout=self.timeout)

    def _probe(self, url: str) -> None:
        """Lightweight HEAD reachability check."""
        request = urllib.request.Request(
            url, headers={"User-Agent": _USER_AGENT}, method="HEAD"
        )
        try:
            response = self._open(request)
            response.close()
        except urllib.error.HTTPError as exc:
            if exc.code in _HEAD_UNSUPPORTED:
                return
            raise UnreachableSource(url, f"HTTP {exc.code} on reachability check") from exc
        except (urllib.error.URLError, OSError, _TooManyRedirects) as exc:
            raise UnreachableSource(url, f"reachability check failed: {exc}") from exc

    def _get(self, url: str) -> tuple[bytes, str]:
        """Return (body_bytes, content_type_without_params)."""
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        try:
            response = self._open(request)
        except urllib.error.HTTPError as exc:
            raise UnreachableSource(url, f"HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError, _TooManyRedirects) as exc:
            raise UnreachableSource(url, str(exc)) from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            try:
                body = response.read(self.max_bytes + 1)
            except OSError as exc:
                raise UnreachableSource(url, f"read failed: {exc}") from exc

        if len(body) > self.max_bytes:
            raise UnreachableSource(
                url, f"response body exceeds {self.max_bytes} bytes"
            )
        return body, ct

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_plain_text(body: bytes, content_type: str) -> str:
        """Convert *body* to plain text; unsupported types yield ''."""
        if content_type not in _TEXT_CONTENT_TYPES:
            logger.warning("Unsupported Content-Type '%s'; no text extracted", content_type)
            return ""
        text = body.decode("utf-8", errors="replace")
        if content_type == "text/plain":
            return text

        soup = BeautifulSoup(text, "html.parser")
        for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
            tag.decompose()
        return _h2t.handle(str(soup)).strip()


class _TooManyRedirects(Exception):
    pass


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise after more than *max_redirects* redirects.

    Each redirect target is re-checked with *guard* before it is followed.
    """

    def __init__(self, max_redirects: int, guard: Callable[[str], None] | None = None) -> None:
        self._max_redirects = max_redirects
        self._guard = guard
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise _TooManyRedirects(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        Fetcher._validate_scheme(newurl)
        if self._guard is not None:
            self._guard(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
