"""Planning of object downloads: range validation, headers and dispositions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from http import HTTPStatus

DEFAULT_MAX_HEADER_SIZE = 8192

_INT64_MAX = (1 << 63) - 1
_HALF_INT64 = _INT64_MAX // 2
_MAX_DIGITS = 19
_FORBIDDEN_CHARS = "+-*/()[]{}"
_MAX_FIELDS = 10
_BYTES_PREFIX = "bytes="
_DIGITS = re.compile(r"[0-9]+")

_INLINE = "inline"
_ATTACHMENT = "attachment"


class RangeError(ValueError):
    """Raised when a Range header or the range it asks for is not acceptable."""


@dataclass(frozen=True)
class ByteRange:
    """A requested byte range; ``end`` is ``None`` when it runs to the end of the object."""

    start: int = 0
    end: int | None = None
    is_range: bool = False


@dataclass
class StreamPlan:
    """The status, headers and byte span with which an object should be served."""

    status: int
    headers: dict[str, str] = field(default_factory=dict)
    start: int = 0
    end: int = 0
    length: int = 0

    @property
    def partial(self) -> bool:
        return self.status == HTTPStatus.PARTIAL_CONTENT

    @property
    def satisfiable(self) -> bool:
        return self.status != HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE


def resolve_disposition(value: str) -> str:
    """Return ``"inline"`` for any casing of inline, ``"attachment"`` otherwise."""
    normalized = value.lower()
    if normalized == _INLINE:
        return _INLINE
    return _ATTACHMENT


def sanitize_filename(name: str) -> str:
    """Replace line breaks so a file name cannot inject extra headers."""
    return name.replace("\n", "_").replace("\r", "_")


def _base_name(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _parse_bound(text: str, which: str) -> int:
    if len(text) > _MAX_DIGITS:
        raise RangeError(f"{which} range value too long")
    if not _DIGITS.fullmatch(text):
        raise RangeError(f"invalid {which} range value")
    value = int(text)
    if value > _INT64_MAX:
        raise RangeError(f"invalid {which} range value")
    if value >= _HALF_INT64:
        raise RangeError(f"{which} range value out of bounds")
    return value


def validate_range(
    range_header: str, max_header_size: int = DEFAULT_MAX_HEADER_SIZE
) -> ByteRange:
    """Check a Range header and extract the byte range it names.

    An empty header means the whole object. Headers holding any of the
    characters ``+-*/()[]{}``, a ``..`` sequence or more than ten
    whitespace-separated fields are rejected outright.
    """
    if range_header == "":
        return ByteRange()

    if len(range_header.encode("utf-8")) > max_header_size:
        raise RangeError("range header exceeds maximum size")

    if (
        ".." in range_header
        or any(char in range_header for char in _FORBIDDEN_CHARS)
        or len(range_header.split()) > _MAX_FIELDS
    ):
        raise RangeError("invalid range header content")

    if not range_header.startswith(_BYTES_PREFIX):
        raise RangeError("unsupported range type")

    parts = range_header[len(_BYTES_PREFIX):].split("-")
    if len(parts) != 2:
        raise RangeError("invalid range header format")

    start_text, end_text = parts
    start = _parse_bound(start_text, "start") if start_text else 0
    end = _parse_bound(end_text, "end") if end_text else None

    if end is not None and start > end:
        raise RangeError("start range greater than end range")

    return ByteRange(start, end, True)


def plan_stream(
    object_name: str,
    size: int,
    content_type: str = "",
    range_header: str = "",
    disposition: str = "",
    filename: str = "",
) -> StreamPlan:
    """Work out how to serve an object of ``size`` bytes for the given request.

    Raises :class:`RangeError` for a malformed Range header. A range that
    falls outside the object gives a 416 plan carrying only Content-Range.
    """
    disposition = disposition or _ATTACHMENT
    filename = filename or _base_name(object_name)

    requested = validate_range(range_header)
    start = requested.start
    end = size - 1 if requested.end is None else requested.end

    if start >= size or end >= size or start > end:
        return StreamPlan(
            status=HTTPStatus.REQUESTED_RANGE_NOT_SATISFIABLE,
            headers={"Content-Range": f"bytes */{size}"},
            start=start,
            end=end,
            length=0,
        )

    status = HTTPStatus.PARTIAL_CONTENT if requested.is_range else HTTPStatus.OK

    if start < 0 or end < 0:
        raise RangeError("negative range values not allowed")
    if start >= _HALF_INT64 or end >= _HALF_INT64:
        raise RangeError("range values too large")

    length = end - start + 1
    if length <= 0 or length > _HALF_INT64:
        raise RangeError("invalid calculated length")

    headers = {
        "Content-Type": content_type or "application/octet-stream",
        "Accept-Ranges": "bytes",
        "Content-Length": str(length),
        "Content-Disposition": f'{disposition}; filename="{sanitize_filename(filename)}"',
    }
    if status == HTTPStatus.PARTIAL_CONTENT:
        headers["Content-Range"] = f"bytes {start}-{end}/{size}"

    return StreamPlan(status=status, headers=headers, start=start, end=end, length=length)