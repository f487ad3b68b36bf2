"""
stock_engines.tracer -- ``@traced_engine``, the STOCK_ENGINE_TRACE decorator.

Every pure calculation (WAC, price variance, reconciliation) is wrapped so
that one log record per call states which engine ran, at which version, on
what inputs and for how long.  Inputs are not logged verbatim: the chosen
keyword arguments are reduced to a short SHA-256 fingerprint, so two calls
with the same quantities and prices can be matched up in the logs.

Fingerprints are stable across processes:
    - Decimals render in plain notation (``Decimal("1E+1")`` -> ``10``).
    - Dataclass inputs are fingerprinted as a mapping of their fields.
    - Mapping keys are sorted by their rendered form.
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from dataclasses import fields, is_dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from stock_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


@functools.singledispatch
def _render(value: Any) -> str:
    if is_dataclass(value) and not isinstance(value, type):
        return _render({f.name: getattr(value, f.name) for f in fields(value)})
    return repr(value)


@_render.register(type(None))
def _(value) -> str:
    return "null"


@_render.register(Decimal)
def _(value) -> str:
    return format(value.normalize() if value else Decimal(0), "f")


@_render.register(int)
@_render.register(str)
@_render.register(UUID)
def _(value) -> str:
    return str(value)


@_render.register(Mapping)
def _(value) -> str:
    pairs = sorted((_render(k), _render(v)) for k, v in value.items())
    return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"


@_render.register(list)
@_render.register(tuple)
def _(value) -> str:
    return "[" + ",".join(_render(v) for v in value) + "]"


def compute_input_fingerprint(names: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    """Hex fingerprint of ``kwargs`` restricted to ``names``; absent names count as null."""
    digest = hashlib.sha256()
    for name in names:
        digest.update(f"{name}={_render(kwargs.get(name))};".encode())
    return digest.hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[Callable], Callable]:
    """Log a STOCK_ENGINE_TRACE record for each successful call of the wrapped engine.

    Only keyword arguments are fingerprinted, so engines are declared
    keyword-only where they take part in the fingerprint.
    """

    def wrap(func: Callable) -> Callable:
        @functools.wraps(func)
        def traced(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            result = func(*args, **kwargs)
            logger.info(
                "STOCK_ENGINE_TRACE",
                extra={
                    "trace_type": "STOCK_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": (
                        compute_input_fingerprint(fingerprint_fields, kwargs)
                        if fingerprint_fields else ""
                    ),
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                },
            )
            return result

        return traced

    return wrap
