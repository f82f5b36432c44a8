"""Append-only JSONL audit trail for payment outcomes that need a human."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from filelock import FileLock, Timeout

from core.env import env_int, env_str

logger = logging.getLogger(__name__)

_DEFAULT_AUDIT_LOG_PATH = Path("uploads") / "admin" / "payment_audit.jsonl"
_MAX_PERSISTED_ENTRIES = 1000


def _audit_log_path() -> Path:
    configured = env_str("PAYMENT_AUDIT_LOG_FILE")
    return Path(configured) if configured else _DEFAULT_AUDIT_LOG_PATH


def _audit_lock(path: Path) -> FileLock:
    lock_path = path.parent / f"{path.name}.lock"
    timeout = env_int("PAYMENT_AUDIT_LOCK_TIMEOUT_SECONDS", 5, minimum=1)
    return FileLock(str(lock_path), timeout=timeout)


def append_payment_audit_entry(
    *,
    event: str,
    context: Dict[str, Any],
    message: Optional[str] = None,
) -> None:
    """Record ``event`` for later reconciliation. File errors are logged, not raised."""
    entry = {
        "loggedAt": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "message": message,
        "context": context,
    }
    path = _audit_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _audit_lock(path):
            with path.open("a", encoding="utf-8") as fp:
                fp.write(json.dumps(entry, ensure_ascii=False, default=str))
                fp.write("\n")
            _truncate_audit_log(path)
    except Timeout as exc:  # pragma: no cover - lock contention
        logger.error("Payment audit log lock timeout at %s: %s", path, exc)
    except OSError as exc:  # pragma: no cover - filesystem failure
        logger.error("Failed to write payment audit log %s: %s", path, exc)


def read_recent_payment_entries(limit: int = 100) -> Iterable[Dict[str, Any]]:
    """Return the newest audit entries first."""
    path = _audit_log_path()
    if not path.exists():
        return []
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:  # pragma: no cover
        logger.error("Unable to read payment audit log %s: %s", path, exc)
        return []

    entries: list[Dict[str, Any]] = []
    for line in reversed(lines[-limit:]):
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries


def _truncate_audit_log(path: Path) -> None:
    lines = path.read_text(encoding="utf-8").splitlines()
    if len(lines) <= _MAX_PERSISTED_ENTRIES:
        return
    path.write_text("\n".join(lines[-_MAX_PERSISTED_ENTRIES:]) + "\n", encoding="utf-8")


__all__ = ["append_payment_audit_entry", "read_recent_payment_entries"]
