# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""JSON handlers built from plain typed functions.

``JSONHandler(fn)`` inspects *fn* once, at construction, and produces an
``ErrorHandler`` that decodes the request body into *fn*'s input type and
encodes its result. Every part of the signature is optional::

    fn([ctx: Env], [in: InType]) -> [OutType | ErrType | tuple[OutType, ErrType | None]]

- ``ctx`` is a first parameter annotated ``Env``; it carries the request,
  the response writer, the trace ID and the session.
- ``in`` may be any type pydantic can validate. When present, the request
  must be ``POST`` (else 405) with a ``Content-Type`` of
  ``application/json`` (else 400). Numbers are decoded losslessly
  (``Decimal`` for non-integers) before validation. Only the first JSON
  value of the body is read; bytes after it are ignored. ``InType | None``
  accepts a JSON ``null`` body as ``None``.
- A return annotation that is an exception type means the function returns
  its error; a non-None one is handled as if raised. Raised exceptions are
  always honored.
- With an output, the result is written as JSON with status 200; without
  one the status defaults to 204. ``Decimal`` values, including ones that
  reached an untyped input such as ``dict``, are written as JSON numbers.

Sync functions run in starlette's threadpool. They can read ``Env`` but
cannot write through ``Env.writer``, whose methods are coroutines; use an
``async def`` for that. A signature outside these shapes raises
``TypeError`` immediately.
"""

from __future__ import annotations

import inspect
import json
import re
import types
import typing
from decimal import Decimal
from typing import Any, Union

from pydantic import TypeAdapter
from pydantic_core import PydanticSerializationError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from .context import REQUEST_KEY, WRITER_KEY, Env
from .err_handler import ErrorHandler
from .errors import CodedError, JSONArgumentError, JSONResponseError
from .writer import ResponseSink

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

_WANT = "want fn([ctx: Env], [in]) -> [out], [error]"
_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
_NONE_TYPE = type(None)
_ANY_ADAPTER: TypeAdapter[Any] = TypeAdapter(Any)
_DECODER = json.JSONDecoder(parse_float=Decimal)
_JSON_WHITESPACE = " \t\n\r"

_TOKEN = r"[!#$%&'*+.^_`|~0-9A-Za-z-]+"
_MEDIA_TYPE_RE = re.compile(rf"{_TOKEN}/{_TOKEN}")
_PARAM_RE = re.compile(rf'\s*({_TOKEN})\s*=\s*({_TOKEN}|"(?:[^"\\]|\\.)*")\s*')


def parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    """Parse a ``Content-Type`` value into a lowercased media type and parameters.

    Raises ``ValueError`` for a missing or malformed media type or parameter.
    """
    media_type, _, rest = value.partition(";")
    media_type = media_type.strip().lower()
    if not media_type:
        raise ValueError("mime: no media type")
    if not _MEDIA_TYPE_RE.fullmatch(media_type):
        raise ValueError(f"mime: invalid media type {media_type!r}")

    params: dict[str, str] = {}
    for segment in rest.split(";") if rest else []:
        if not segment.strip():
            continue
        m = _PARAM_RE.fullmatch(segment)
        if m is None:
            raise ValueError(f"mime: invalid media parameter {segment.strip()!r}")
        name, val = m.group(1).lower(), m.group(2)
        if val.startswith('"'):
            val = re.sub(r"\\(.)", r"\1", val[1:-1])
        if name in params:
            raise ValueError(f"mime: duplicate parameter name {name!r}")
        params[name] = val
    return media_type, params


def decode_first(body: bytes) -> Any:
    """Decode the first JSON value in *body*, ignoring anything after it.

    Non-integer numbers decode to ``Decimal``. Raises ``ValueError`` for
    invalid UTF-8 or a missing or malformed value.
    """
    text = body.decode("utf-8")
    start = len(text) - len(text.lstrip(_JSON_WHITESPACE))
    value, _ = _DECODER.raw_decode(text, start)
    return value


def _json_numbers(value: Any) -> Any:
    # Decimal dumps as a JSON string; integral ones go out exact, the rest as float.
    if isinstance(value, Decimal):
        if value.is_finite() and value.as_tuple().exponent >= 0:
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: _json_numbers(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_numbers(v) for v in value]
    return value


async def respond_json(writer: ResponseSink, obj: Any, adapter: TypeAdapter | None = None) -> None:
    """Respond with *obj* JSON-encoded (indented, newline-terminated)."""
    writer.headers["content-type"] = JSON_CONTENT_TYPE
    try:
        data = _json_numbers((adapter or _ANY_ADAPTER).dump_python(obj))
        body = _ANY_ADAPTER.dump_json(data, indent=2) + b"\n"
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        raise JSONResponseError(f"marshaling JSON response: {exc}") from exc
    await writer.write(body)


class JSONHandler(ErrorHandler):
    """ASGI app adapting a typed function to a POST+JSON endpoint."""

    def __init__(self, fn: Any) -> None:
        if not callable(fn):
            raise TypeError(f"got {type(fn).__name__}, {_WANT}")
        try:
            sig = inspect.signature(fn)
        except (TypeError, ValueError) as exc:
            raise TypeError(f"got {fn!r}, {_WANT}") from exc
        hints = _type_hints(fn, sig)

        self.fn = fn
        self.is_async = inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
            getattr(fn, "__call__", None)
        )
        self.has_ctx, self.has_in, self.in_type, self.in_optional = _arg_info(fn, sig, hints)
        self.has_err, self.has_out, self.out_type = _result_info(fn, sig, hints)

        self._in_adapter: TypeAdapter | None = TypeAdapter(self.in_type) if self.has_in else None
        self._out_adapter: TypeAdapter | None = TypeAdapter(self.out_type) if self.has_out else None
        super().__init__(self._serve_json)

    def __repr__(self) -> str:
        return f"JSONHandler({getattr(self.fn, '__qualname__', self.fn)!s})"

    async def _serve_json(self, writer: ResponseSink, request: Request) -> None:
        args: list[Any] = []
        if self.has_ctx:
            scope = request.scope
            state = scope.setdefault("state", {})
            state[REQUEST_KEY] = request
            state[WRITER_KEY] = writer
            args.append(Env(scope=scope, request=request, writer=writer))
        if self.has_in:
            args.append(await self._decode_input(request))

        if self.is_async:
            result = await self.fn(*args)
        else:
            result = await run_in_threadpool(self.fn, *args)

        if self.has_err:
            if self.has_out:
                result, error = result
            else:
                result, error = None, result
            if error is not None:
                raise error

        if not self.has_out:
            return
        await respond_json(writer, result, self._out_adapter)

    async def _decode_input(self, request: Request) -> Any:
        if request.method.upper() != "POST":
            raise CodedError(405)

        try:
            media_type, _ = parse_media_type(request.headers.get("content-type", ""))
        except ValueError as exc:
            raise CodedError(400, exc) from exc
        if media_type != "application/json":
            raise CodedError(400)

        body = await request.body()
        try:
            data = decode_first(body)
            if data is None and self.in_optional:
                return None
            return self._in_adapter.validate_python(data)  # type: ignore[union-attr]
        except ValueError as exc:
            raise JSONArgumentError(f"unmarshaling JSON argument: {exc}") from exc


def json_handler(fn: Any) -> JSONHandler:
    """Decorator-friendly alias of ``JSONHandler``."""
    return JSONHandler(fn)


# ── Signature introspection ─────────────────────────────────────────


def _shape_error(fn: Any, sig: inspect.Signature, why: str = "") -> TypeError:
    name = getattr(fn, "__qualname__", type(fn).__name__)
    detail = f" ({why})" if why else ""
    return TypeError(f"got {name}{sig}{detail}, {_WANT}")


def _type_hints(fn: Any, sig: inspect.Signature) -> dict[str, Any]:
    target = fn if inspect.isfunction(fn) or inspect.ismethod(fn) else getattr(fn, "__call__", fn)
    try:
        return typing.get_type_hints(target)
    except Exception as exc:  # noqa: BLE001
        raise _shape_error(fn, sig, f"cannot resolve annotations: {exc}") from exc


def _is_env(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, Env)


def _strip_optional(annotation: Any) -> tuple[Any, bool]:
    """Split ``T | None`` into ``(T, True)``; anything else is ``(annotation, False)``."""
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = typing.get_args(annotation)
        if _NONE_TYPE in args:
            rest = tuple(a for a in args if a is not _NONE_TYPE)
            if len(rest) == 1:
                return rest[0], True
            return Union[rest], True  # noqa: UP007
    return annotation, False


def _is_error_type(annotation: Any) -> bool:
    inner, _ = _strip_optional(annotation)
    return isinstance(inner, type) and issubclass(inner, BaseException)


def _arg_info(fn: Any, sig: inspect.Signature, hints: dict[str, Any]) -> tuple[bool, bool, Any, bool]:
    """Return ``(has_ctx, has_in, in_type, in_optional)``."""
    params = list(sig.parameters.values())
    for p in params:
        if p.kind not in _POSITIONAL:
            raise _shape_error(fn, sig, f"parameter {p.name!r} is not positional")
    if len(params) > 2:
        raise _shape_error(fn, sig, "too many parameters")

    has_ctx = False
    in_param: inspect.Parameter | None = None
    if len(params) == 1:
        if _is_env(hints.get(params[0].name)):
            has_ctx = True
        else:
            in_param = params[0]
    elif len(params) == 2:
        if not _is_env(hints.get(params[0].name)):
            raise _shape_error(fn, sig, "first of two parameters must be Env")
        has_ctx = True
        in_param = params[1]

    if in_param is None:
        return has_ctx, False, None, False
    if in_param.name not in hints:
        raise _shape_error(fn, sig, f"input parameter {in_param.name!r} has no annotation")
    in_type, in_optional = _strip_optional(hints[in_param.name])
    if _is_env(in_type):
        raise _shape_error(fn, sig, "Env must come first")
    return has_ctx, True, in_type, in_optional


def _result_info(fn: Any, sig: inspect.Signature, hints: dict[str, Any]) -> tuple[bool, bool, Any]:
    """Return ``(has_err, has_out, out_type)``."""
    if "return" not in hints:
        return False, False, None
    annotation = hints["return"]
    if annotation is None or annotation is _NONE_TYPE:
        return False, False, None
    if _is_error_type(annotation):
        return True, False, None
    if typing.get_origin(annotation) is tuple:
        args = typing.get_args(annotation)
        if args and _is_error_type(args[-1]):
            if len(args) != 2 or args[0] is Ellipsis or _is_error_type(args[0]):
                raise _shape_error(fn, sig, "want tuple[out, error]")
            return True, True, args[0]
    return False, True, annotation
