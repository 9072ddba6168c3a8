"""A general-purpose REST client with typed errors for network failures."""

from __future__ import annotations

import dataclasses
import json
import logging
import socket
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

import requests
from requests.structures import CaseInsensitiveDict

_log = logging.getLogger(__name__)

_TIMEOUT_PATTERNS = (
    "timeout",
    "deadline exceeded",
    "context deadline exceeded",
    "client timeout exceeded",
    "request timeout",
)
_CONNECTION_REFUSED_PATTERNS = (
    "connection refused",
    "connect: connection refused",
    "no connection could be made",
)
_DNS_PATTERNS = (
    "no such host",
    "dns",
    "name resolution",
    "temporary failure in name resolution",
    "failed to resolve",
)
_ESB_PREFIXES = ("X-ESB-", "x-esb-")


def _format_duration(seconds: float) -> str:
    """Render a duration in seconds the way durations are usually shown: 5s, 1m30s, 500ms."""
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    if seconds < 1e-6:
        return f"{sign}{seconds * 1e9:g}ns"
    if seconds < 1e-3:
        return f"{sign}{seconds * 1e6:g}µs"
    if seconds < 1:
        return f"{sign}{seconds * 1e3:g}ms"
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{secs:g}s"
    if minutes:
        return f"{sign}{int(minutes)}m{secs:g}s"
    return f"{sign}{secs:g}s"


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


class TransportError(Exception):
    """Base class for failures of a request to a remote service."""

    def __init__(self, url: str, cause: BaseException | None = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"transport error to {self.url}: {self.cause}"


class RequestTimeoutError(TransportError):
    """The request did not complete within the client's timeout."""

    def __init__(self, url: str, timeout: float, cause: BaseException | None = None) -> None:
        self.timeout = timeout
        super().__init__(url, cause)

    @property
    def is_timeout(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"timeout after {_format_duration(self.timeout)} calling {self.url}: {self.cause}"


class ConnectionFailedError(TransportError):
    """The remote host refused the connection."""

    def __str__(self) -> str:
        return f"connection error to {self.url}: {self.cause}"


class DNSResolutionError(TransportError):
    """The host name of the URL could not be resolved."""

    def __str__(self) -> str:
        return f"DNS error for {self.url}: {self.cause}"


class RequestFailedError(TransportError):
    """Any other failure to send the request or receive the response."""

    def __str__(self) -> str:
        return f"request error to {self.url}: {self.cause}"


class HTTPStatusError(TransportError):
    """The server answered with a status code of 400 or above."""

    def __init__(
        self,
        url: str,
        status_code: int,
        body: bytes,
        headers: Mapping[str, str],
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers
        super().__init__(url, None)

    def __str__(self) -> str:
        return self.body.decode("utf-8", "replace")


@dataclass
class RequestOptions:
    """Per-request settings.

    ``files`` maps form field names to bytes or readable streams and makes the
    request a multipart form; a mapping ``body`` then supplies extra form
    fields. Otherwise a ``str`` body is sent as text, bytes or a stream as-is,
    and anything else is encoded as JSON.
    """

    headers: dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    body: Any = None
    content_type: str = ""
    files: dict[str, Any] = field(default_factory=dict)
    is_esb: bool = False


def _walk(err: BaseException) -> Iterator[BaseException]:
    """Yield ``err`` and every exception it wraps."""
    seen: set[int] = set()
    pending = [err]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        for linked in (current.__cause__, current.__context__, getattr(current, "reason", None)):
            if isinstance(linked, BaseException):
                pending.append(linked)
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))


def _matches(err: BaseException, patterns: tuple[str, ...]) -> bool:
    message = str(err).lower()
    return any(pattern in message for pattern in patterns)


def _looks_like_timeout(err: BaseException) -> bool:
    if any(isinstance(e, (requests.Timeout, TimeoutError)) for e in _walk(err)):
        return True
    return _matches(err, _TIMEOUT_PATTERNS)


def _looks_like_refused(err: BaseException) -> bool:
    if any(isinstance(e, ConnectionRefusedError) for e in _walk(err)):
        return True
    return _matches(err, _CONNECTION_REFUSED_PATTERNS)


def _looks_like_dns(err: BaseException) -> bool:
    if any(isinstance(e, socket.gaierror) for e in _walk(err)):
        return True
    return _matches(err, _DNS_PATTERNS)


def is_timeout_error(err: BaseException | None) -> bool:
    """Tell whether ``err`` is a timeout."""
    if err is None:
        return False
    return isinstance(err, RequestTimeoutError) or _looks_like_timeout(err)


def is_connection_error(err: BaseException | None) -> bool:
    """Tell whether ``err`` is a refused connection."""
    if err is None:
        return False
    return isinstance(err, ConnectionFailedError) or _looks_like_refused(err)


def is_dns_error(err: BaseException | None) -> bool:
    """Tell whether ``err`` is a failed host name lookup."""
    if err is None:
        return False
    return isinstance(err, DNSResolutionError) or _looks_like_dns(err)


def get_error_details(err: BaseException | None) -> dict[str, Any] | None:
    """Describe ``err`` as a dictionary suitable for logging or a response body."""
    if err is None:
        return None
    details: dict[str, Any] = {
        "error": str(err),
        "type": "unknown",
        "is_timeout": is_timeout_error(err),
        "is_connection": is_connection_error(err),
        "is_dns": is_dns_error(err),
    }
    if isinstance(err, RequestTimeoutError):
        details["type"] = "timeout"
        details["url"] = err.url
        details["timeout_duration"] = _format_duration(err.timeout)
    elif isinstance(err, ConnectionFailedError):
        details["type"] = "connection"
        details["url"] = err.url
    elif isinstance(err, DNSResolutionError):
        details["type"] = "dns"
        details["url"] = err.url
    elif isinstance(err, RequestFailedError):
        details["type"] = "request"
        details["url"] = err.url
    return details


def _pretty(label: str, data: bytes) -> None:
    try:
        text = json.dumps(json.loads(data), indent=2, ensure_ascii=False)
    except (ValueError, UnicodeDecodeError):
        _log.debug("%s: %s", label, data.decode("utf-8", "replace"))
        return
    _log.debug("%s:\n%s", label, text)


class RestClient:
    """Sends requests relative to ``base_url``; ``timeout`` is in seconds, 0 for none.

    ``get``, ``post``, ``put``, ``delete`` and ``do`` return a tuple of the
    response body, status code and headers. A status of 400 or above raises
    :class:`HTTPStatusError`; network failures raise the matching
    :class:`TransportError` subclass.
    """

    def __init__(self, base_url: str = "", timeout: float = 0.0) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.headers: dict[str, str] = {}
        self.debug = True
        self.verify_tls = True
        self.session = requests.Session()

    def _build_url(self, path: str, query_params: Mapping[str, str]) -> str:
        full_url = self.base_url + path
        if not query_params:
            return full_url
        parts = urlsplit(full_url)
        query = parse_qs(parts.query, keep_blank_values=True)
        for key, value in query_params.items():
            query[key] = [value]
        encoded = urlencode(sorted(query.items()), doseq=True)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, encoded, parts.fragment))

    @staticmethod
    def _encode_body(opts: RequestOptions) -> tuple[Any, Any, str, bytes]:
        """Return request data, files, implied content type and the loggable body."""
        if opts.files:
            files = {name: (name, source) for name, source in opts.files.items()}
            data = None
            if isinstance(opts.body, Mapping) and all(
                isinstance(v, str) for v in opts.body.values()
            ):
                data = dict(opts.body)
            return data, files, "", b""

        body = opts.body
        if body is None:
            return None, None, "", b""
        if isinstance(body, (bytes, bytearray)) or hasattr(body, "read"):
            return body, None, "", b""
        if isinstance(body, str):
            raw = body.encode("utf-8")
            return raw, None, "", raw
        if dataclasses.is_dataclass(body) and not isinstance(body, type):
            body = dataclasses.asdict(body)
        raw = json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return raw, None, "application/json", raw

    def _build_headers(self, opts: RequestOptions, implied_type: str) -> CaseInsensitiveDict:
        headers: CaseInsensitiveDict = CaseInsensitiveDict()
        for key, value in self.headers.items():
            headers[_canonical_header(key)] = value
        for key, value in opts.headers.items():
            if opts.is_esb and key.startswith(_ESB_PREFIXES):
                headers[key] = value
            else:
                headers[_canonical_header(key)] = value
        if opts.content_type:
            headers["Content-Type"] = opts.content_type
        elif implied_type:
            headers["Content-Type"] = implied_type
        return headers

    def _classify(self, err: BaseException, url: str) -> TransportError:
        if _looks_like_timeout(err):
            wrapped: TransportError = RequestTimeoutError(url, self.timeout, err)
        elif _looks_like_refused(err):
            wrapped = ConnectionFailedError(url, err)
        elif _looks_like_dns(err):
            wrapped = DNSResolutionError(url, err)
        else:
            wrapped = RequestFailedError(url, err)
        if self.debug:
            _log.error("%s", wrapped)
        return wrapped

    def do(
        self, method: str, path: str, opts: RequestOptions | None = None
    ) -> tuple[bytes, int, CaseInsensitiveDict]:
        """Send a request and return ``(body, status_code, headers)``."""
        opts = opts if opts is not None else RequestOptions()
        url = self._build_url(path, opts.query_params)
        data, files, implied_type, raw_body = self._encode_body(opts)
        headers = self._build_headers(opts, implied_type)

        if self.debug:
            _log.debug("%s %s", method, url)
            for key, value in headers.items():
                _log.debug("Request Header: %s=%s", key, value)
            if raw_body:
                _pretty("Request Body", raw_body)

        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                data=data,
                files=files,
                timeout=self.timeout or None,
                verify=self.verify_tls,
            )
            body = response.content
        except (requests.RequestException, OSError) as exc:
            raise self._classify(exc, url) from exc

        if self.debug:
            _log.debug("Response Status: %d", response.status_code)
            for key, value in response.headers.items():
                _log.debug("Response Header: %s=%s", key, value)
            if body:
                _pretty("Response Body", body)

        if response.status_code >= 400:
            raise HTTPStatusError(url, response.status_code, body, response.headers)
        return body, response.status_code, response.headers

    def get(self, path: str, opts: RequestOptions | None = None) -> tuple[bytes, int, CaseInsensitiveDict]:
        """Send a GET request."""
        return self.do("GET", path, opts)

    def post(self, path: str, opts: RequestOptions | None = None) -> tuple[bytes, int, CaseInsensitiveDict]:
        """Send a POST request."""
        return self.do("POST", path, opts)

    def put(self, path: str, opts: RequestOptions | None = None) -> tuple[bytes, int, CaseInsensitiveDict]:
        """Send a PUT request."""
        return self.do("PUT", path, opts)

    def delete(self, path: str, opts: RequestOptions | None = None) -> tuple[bytes, int, CaseInsensitiveDict]:
        """Send a DELETE request."""
        return self.do("DELETE", path, opts)