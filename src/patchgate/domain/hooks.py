"""
patchgate — best-effort determinism hooks

File: src/patchgate/domain/hooks.py
Last updated: 2026-10-18

Purpose
- Resolve the injectable clock and run-id generator used by every stage.

Functional requirements
- A run-id hook result is used only when it is a non-blank string.
- Otherwise the upstream run id is propagated, else a fresh UUID4 is generated.
- A clock hook result is used only when it is a timezone-aware ``datetime``.
- A hook that raises never propagates; the fallback is taken and a warning is logged.

Non-functional requirements
- Fallbacks are observable through structlog warning events, never silent.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

Clock = Callable[[], datetime]
RunIdFactory = Callable[[], object]

__all__ = ["Clock", "RunIdFactory", "resolve_produced_at", "resolve_run_id", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def resolve_run_id(
    run_id_factory: RunIdFactory | None,
    *,
    stage: str,
    upstream_run_id: str | None = None,
    logger: Any | None = None,
) -> str:
    log = logger if logger is not None else structlog.get_logger(__name__)
    if run_id_factory is not None:
        try:
            candidate = run_id_factory()
        except Exception as exc:
            log.warning("run_id_hook_failed", stage=stage, error=str(exc))
        else:
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
            log.warning("run_id_hook_invalid", stage=stage, returned_type=type(candidate).__name__)
    if upstream_run_id:
        return upstream_run_id
    return str(uuid.uuid4())


def resolve_produced_at(
    now: Clock | None,
    *,
    stage: str,
    logger: Any | None = None,
) -> datetime:
    if now is None:
        return utc_now()
    log = logger if logger is not None else structlog.get_logger(__name__)
    try:
        candidate = now()
    except Exception as exc:
        log.warning("clock_hook_failed", stage=stage, error=str(exc))
        return utc_now()
    if isinstance(candidate, datetime) and candidate.utcoffset() is not None:
        return candidate.astimezone(UTC)
    log.warning("clock_hook_invalid", stage=stage, returned_type=type(candidate).__name__)
    return utc_now()
