"""Binding of request data (JSON, path, query and multipart forms) onto dataclasses.

Only dataclass fields are populated, so unexpected keys in a request are
ignored. A field's name in the request comes from its metadata (``json``,
``uri`` or ``form``, options after a comma are dropped) or, without one, from
the lower-cased field name. Fields whose names start with an underscore are
never bound.
"""

from __future__ import annotations

import copy
import dataclasses
import io
import json
import math
import re
import types
import typing
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from email.message import Message
from email.utils import collapse_rfc2231_value
from typing import Any, Union
from urllib.parse import parse_qs

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_TEXT_TYPES = (str, int, float, bool)
_ANNOTATION_LEXEME = re.compile(r"[A-Za-z_][\w.]*|[\[\],|]|\S")


class BindError(ValueError):
    """Raised when request data cannot be bound to the target class."""


@dataclass(frozen=True)
class UploadedFile:
    """A file received in a multipart form."""

    filename: str
    content: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    def open(self) -> io.BytesIO:
        """Return a fresh binary stream over the file's content."""
        return io.BytesIO(self.content)


@dataclass
class _Form:
    values: dict[str, list[str]] = field(default_factory=dict)
    files: dict[str, list[UploadedFile]] = field(default_factory=dict)

    def value(self, name: str) -> str:
        found = self.values.get(name)
        return found[0] if found else ""

    def file(self, name: str) -> UploadedFile | None:
        found = self.files.get(name)
        return found[0] if found else None


# --- annotation resolution --------------------------------------------------

_NAME_TABLE: dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
    "list": list,
    "dict": dict,
    "List": typing.List,
    "Dict": typing.Dict,
    "Optional": typing.Optional,
    "Union": typing.Union,
    "Any": Any,
    "None": type(None),
    "NoneType": type(None),
    "UploadedFile": UploadedFile,
}


class _AnnotationParser:
    """Resolves a textual annotation such as ``list[int] | None`` to a type."""

    def __init__(self, text: str, namespace: Mapping[str, Any]) -> None:
        self._lexemes = _ANNOTATION_LEXEME.findall(text)
        self._pos = 0
        self._namespace = namespace

    def parse(self) -> Any:
        result = self._union()
        if self._pos != len(self._lexemes):
            raise ValueError("unexpected trailing text in annotation")
        return result

    def _peek(self) -> str | None:
        return self._lexemes[self._pos] if self._pos < len(self._lexemes) else None

    def _take(self) -> str:
        lexeme = self._peek()
        if lexeme is None:
            raise ValueError("unexpected end of annotation")
        self._pos += 1
        return lexeme

    def _union(self) -> Any:
        parts = [self._term()]
        while self._peek() == "|":
            self._take()
            parts.append(self._term())
        if len(parts) == 1:
            return parts[0]
        return Union[tuple(parts)]

    def _term(self) -> Any:
        name = self._take()
        if not (name[0].isalpha() or name[0] == "_"):
            raise ValueError(f"unexpected symbol {name!r} in annotation")
        base = self._lookup(name)
        if self._peek() != "[":
            return base
        self._take()
        args = [self._union()]
        while self._peek() == ",":
            self._take()
            args.append(self._union())
        if self._take() != "]":
            raise ValueError("unbalanced brackets in annotation")
        return base[args[0]] if len(args) == 1 else base[tuple(args)]

    def _lookup(self, name: str) -> Any:
        head, *rest = name.split(".")
        if not rest and head in _NAME_TABLE:
            return _NAME_TABLE[head]
        if head in self._namespace:
            obj = self._namespace[head]
        elif head == "typing":
            obj = typing
        else:
            raise NameError(f"name {head!r} is not defined")
        try:
            for attr in rest:
                obj = getattr(obj, attr)
        except AttributeError as exc:
            raise NameError(f"name {name!r} is not defined") from exc
        return obj


def _class_namespace(cls: type) -> dict[str, Any]:
    init = getattr(cls, "__init__", None)
    namespace = dict(getattr(init, "__globals__", None) or {})
    namespace.setdefault(cls.__name__, cls)
    return namespace


# --- type helpers -----------------------------------------------------------


def _is_struct_type(cls: Any) -> bool:
    return isinstance(cls, type) and dataclasses.is_dataclass(cls)


def _type_hints(cls: type) -> dict[str, Any]:
    namespace: dict[str, Any] | None = None
    hints: dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        if not isinstance(f.type, str):
            hints[f.name] = f.type
            continue
        if namespace is None:
            namespace = _class_namespace(cls)
        try:
            hints[f.name] = _AnnotationParser(f.type, namespace).parse()
        except (NameError, ValueError, TypeError):
            continue
    return hints


def _bindable_fields(cls: type) -> Iterator[tuple[dataclasses.Field, Any]]:
    hints = _type_hints(cls)
    for f in dataclasses.fields(cls):
        if f.name.startswith("_"):
            continue
        yield f, hints.get(f.name, f.type)


def _unwrap_optional(tp: Any) -> tuple[Any, bool]:
    origin = typing.get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(tp)
        non_none = [a for a in args if a is not type(None)]
        if len(args) == 2 and len(non_none) == 1:
            return non_none[0], True
    return tp, False


def _zero(tp: Any) -> Any:
    _, optional = _unwrap_optional(tp)
    if optional:
        return None
    if tp is str:
        return ""
    if tp is bool:
        return False
    if tp is int:
        return 0
    if tp is float:
        return 0.0
    origin = typing.get_origin(tp) or tp
    if origin is list:
        return []
    if origin is dict:
        return {}
    if _is_struct_type(tp):
        return _new_instance(tp)
    return None


def _new_instance(cls: type) -> Any:
    hints = _type_hints(cls)
    kwargs = {
        f.name: _zero(hints.get(f.name, f.type))
        for f in dataclasses.fields(cls)
        if f.init
        and f.default is dataclasses.MISSING
        and f.default_factory is dataclasses.MISSING
    }
    return cls(**kwargs)


def _tag(f: dataclasses.Field, *keys: str) -> str:
    tag = ""
    for key in keys:
        tag = f.metadata.get(key, "")
        if tag:
            break
    if not tag:
        tag = f.name.lower()
    return tag.split(",", 1)[0]


def _is_file_type(hint: Any) -> bool:
    inner, _ = _unwrap_optional(hint)
    return inner is UploadedFile


def _text_supported(hint: Any) -> bool:
    inner, _ = _unwrap_optional(hint)
    return inner in _TEXT_TYPES


# --- value conversion -------------------------------------------------------


def _parse_float(text: str) -> float:
    if not text or text != text.strip() or "_" in text:
        raise BindError(f'invalid float value "{text}"')
    try:
        result = float(text)
    except ValueError:
        if "0x" not in text.lower():
            raise BindError(f'invalid float value "{text}"') from None
        try:
            result = float.fromhex(text)
        except (ValueError, OverflowError):
            raise BindError(f'invalid float value "{text}"') from None
    if math.isinf(result) and "inf" not in text.lower():
        raise BindError(f'float value out of range "{text}"')
    return result


def convert_text(annotation: Any, value: str) -> Any:
    """Convert text from a path, query or form field to ``annotation``."""
    inner, _ = _unwrap_optional(annotation)
    if inner is str:
        return value
    if inner is bool:
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
        raise BindError(f'invalid boolean value "{value}"')
    if inner is int:
        if _INT_PATTERN.fullmatch(value):
            return int(value)
        raise BindError(f'invalid integer value "{value}"')
    if inner is float:
        return _parse_float(value)
    raise BindError(f"unsupported field type: {annotation!r}")


def convert_json(annotation: Any, value: Any, default: Any = None) -> Any:
    """Convert a decoded JSON value to ``annotation``.

    Returns ``default`` when the value does not fit the type.
    """
    inner, optional = _unwrap_optional(annotation)
    if optional:
        if value is None:
            return default
        return convert_json(inner, value, _zero(inner))

    if annotation is str:
        return value if isinstance(value, str) else default
    if annotation is bool:
        return value if isinstance(value, bool) else default
    if annotation is int:
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            try:
                return int(value)
            except (OverflowError, ValueError):
                return default
        if isinstance(value, str) and _INT_PATTERN.fullmatch(value):
            return int(value)
        return default
    if annotation is float:
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return _parse_float(value)
            except BindError:
                return default
        return default

    origin = typing.get_origin(annotation) or annotation
    args = typing.get_args(annotation)
    if origin is list:
        if not isinstance(value, list):
            return default
        item_type = args[0] if args else Any
        return [convert_json(item_type, item, _zero(item_type)) for item in value]
    if origin is dict:
        if not isinstance(value, dict):
            return default
        value_type = args[1] if len(args) == 2 else Any
        return {
            str(key): convert_json(value_type, item, _zero(value_type))
            for key, item in value.items()
        }
    if _is_struct_type(annotation):
        if not isinstance(value, dict):
            return default
        if isinstance(default, annotation):
            target = copy.copy(default)
        else:
            target = _new_instance(annotation)
        map_json_to_struct(value, target)
        return target
    return default


def map_json_to_struct(data: Mapping[str, Any], dest: Any) -> None:
    """Copy matching keys of ``data`` onto the dataclass instance ``dest``."""
    if dest is None or isinstance(dest, type):
        raise BindError("destination must be a non-nil pointer to a struct")
    if not dataclasses.is_dataclass(dest):
        raise BindError("destination must be a pointer to a struct")

    for f, hint in _bindable_fields(type(dest)):
        tag = _tag(f, "json")
        value = data.get(tag)
        if value is None:
            continue
        setattr(dest, f.name, convert_json(hint, value, getattr(dest, f.name)))


# --- body parsing -----------------------------------------------------------


def _read_body(body: Any) -> bytes | str:
    if hasattr(body, "read"):
        try:
            body = body.read()
        except OSError as exc:
            raise BindError("failed to read request body") from exc
    if body is None:
        return b""
    if isinstance(body, str):
        return body
    return bytes(body)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON constant {name}")


def _load_object(text: bytes | str) -> dict[str, Any]:
    if isinstance(text, bytes):
        text = text.decode("utf-8", "replace")
    data = json.loads(text, parse_constant=_reject_constant)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"cannot bind JSON {type(data).__name__} to a struct")
    return data


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def _disposition_param(message: Message, key: str) -> str:
    value = message.get_param(key, header="content-disposition")
    if value is None:
        return ""
    return collapse_rfc2231_value(value)


def _add_part(form: _Form, part: bytes) -> None:
    if part.startswith(b"\r\n"):
        raw_headers, content = b"", part[2:]
    else:
        separator = part.find(b"\r\n\r\n")
        if separator < 0:
            raise ValueError("malformed part")
        raw_headers, content = part[:separator], part[separator + 4 :]

    headers: dict[str, str] = {}
    if raw_headers:
        for line in raw_headers.decode("utf-8", "replace").split("\r\n"):
            name, colon, value = line.partition(":")
            if not colon or not name.strip():
                raise ValueError("malformed part header")
            headers[_canonical_header(name.strip())] = value.strip()

    disposition = Message()
    disposition["Content-Disposition"] = headers.get("Content-Disposition", "")
    if disposition.get_content_disposition() != "form-data":
        return
    name = _disposition_param(disposition, "name")
    if not name:
        return
    filename = _disposition_param(disposition, "filename")
    if filename:
        base = filename.rstrip("/").rsplit("/", 1)[-1] or "/"
        form.files.setdefault(name, []).append(UploadedFile(base, content, headers))
    else:
        form.values.setdefault(name, []).append(content.decode("utf-8", "replace"))


def _read_form(data: bytes, content_type: str) -> _Form:
    header = Message()
    header["Content-Type"] = content_type or ""
    if header.get_content_type() != "multipart/form-data":
        raise ValueError("not a multipart form")
    boundary = header.get_boundary()
    if not boundary:
        raise ValueError("missing boundary")

    pieces = (b"\r\n" + data).split(b"\r\n--" + boundary.encode("utf-8"))
    if len(pieces) < 2:
        raise ValueError("no parts found")

    form = _Form()
    for piece in pieces[1:]:
        if piece.startswith(b"--"):
            return form
        line_end = piece.find(b"\r\n")
        if line_end < 0 or piece[:line_end].strip(b" \t"):
            raise ValueError("malformed boundary line")
        _add_part(form, piece[line_end + 2 :])
    raise ValueError("missing closing boundary")


def _parse_multipart(body: Any, content_type: str) -> _Form:
    try:
        if hasattr(body, "read"):
            body = body.read()
        if isinstance(body, str):
            body = body.encode("utf-8")
        return _read_form(bytes(body or b""), content_type)
    except (ValueError, OSError, TypeError) as exc:
        raise BindError("failed to parse multipart form") from exc


def _first(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else ""
    return "" if value is None else str(value)


def _query_lookup(query: Mapping[str, Any] | str) -> Mapping[str, Any]:
    if isinstance(query, str):
        return parse_qs(query.lstrip("?"), keep_blank_values=True)
    return query


# --- public binders ---------------------------------------------------------


def bind_json(cls: type, body: Any) -> Any:
    """Build ``cls`` from a JSON object body (bytes, text or a readable stream)."""
    raw = _read_body(body)
    if len(raw) == 0:
        raise BindError("request body is empty")
    try:
        data = _load_object(raw)
    except (ValueError, RecursionError) as exc:
        raise BindError("invalid JSON format") from exc
    if not _is_struct_type(cls):
        raise BindError("destination must be a pointer to a struct")
    result = _new_instance(cls)
    map_json_to_struct(data, result)
    return result


def _bind_text(cls: type, lookup: Any, *tag_keys: str) -> Any:
    if not _is_struct_type(cls):
        raise BindError("type parameter must be a struct")
    result = _new_instance(cls)
    for f, hint in _bindable_fields(cls):
        value = lookup(_tag(f, *tag_keys))
        if not value or not _text_supported(hint):
            continue
        setattr(result, f.name, convert_text(hint, value))
    return result


def bind_uri(cls: type, params: Mapping[str, str]) -> Any:
    """Build ``cls`` from path parameters, matched by ``uri`` metadata."""
    return _bind_text(cls, lambda tag: _first(params.get(tag)), "uri")


def bind_query(cls: type, query: Mapping[str, Any] | str) -> Any:
    """Build ``cls`` from query parameters, matched by ``form`` then ``json`` metadata.

    ``query`` is a raw query string or a mapping of names to a value or a
    list of values; the first value of each name is used.
    """
    lookup = _query_lookup(query)
    return _bind_text(cls, lambda tag: _first(lookup.get(tag)), "form", "json")


def bind_multipart_form(cls: type, body: Any, content_type: str) -> Any:
    """Build ``cls`` from a multipart form; ``UploadedFile`` fields receive files."""
    if not _is_struct_type(cls):
        raise BindError("type parameter must be a struct")
    form = _parse_multipart(body, content_type)
    result = _new_instance(cls)
    for f, hint in _bindable_fields(cls):
        tag = _tag(f, "form")
        if _is_file_type(hint):
            upload = form.file(tag)
            if upload is not None:
                setattr(result, f.name, upload)
            continue
        value = form.value(tag)
        if not value or not _text_supported(hint):
            continue
        setattr(result, f.name, convert_text(hint, value))
    return result


def bind_multipart_json(
    cls: type,
    body: Any,
    content_type: str,
    request_field: str,
    file_field: str,
) -> tuple[Any, UploadedFile | None]:
    """Build ``cls`` from JSON text in one form field and return the uploaded file.

    The file is ``None`` when ``file_field`` holds no upload.
    """
    if not _is_struct_type(cls):
        raise BindError("type parameter must be a struct")
    form = _parse_multipart(body, content_type)

    request_text = form.value(request_field)
    if not request_text:
        raise BindError(f"field '{request_field}' is required and must not be empty")
    try:
        data = _load_object(request_text)
    except (ValueError, RecursionError) as exc:
        raise BindError(f"field '{request_field}' contains invalid JSON: {exc}") from exc

    result = _new_instance(cls)
    map_json_to_struct(data, result)
    return result, form.file(file_field)