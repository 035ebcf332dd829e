"""Key/value stores for Pulse cooldown state.

The policy engine only ever needs ``get_float``/``set_float`` on a handful of
keys, so the store interface is intentionally tiny and injectable.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from db.models import PulseStateEntry

logger = logging.getLogger(__name__)


class StateStore:
    def get_float(self, key: str) -> float | None:
        raise NotImplementedError

    def set_float(self, key: str, value: float) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    def __init__(self, initial: dict[str, float] | None = None) -> None:
        self._values: dict[str, float] = dict(initial or {})
        self._lock = threading.Lock()

    def get_float(self, key: str) -> float | None:
        with self._lock:
            return self._values.get(key)

    def set_float(self, key: str, value: float) -> None:
        with self._lock:
            self._values[key] = float(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class SqlStateStore(StateStore):
    """Persists values in ``pulse_state`` using a fresh session per call."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def get_float(self, key: str) -> float | None:
        db = self._session_factory()
        try:
            row = db.get(PulseStateEntry, key)
            if row is None:
                return None
            try:
                return float(row.value)
            except ValueError:
                logger.warning("Ignoring non-numeric pulse state value for %s", key)
                return None
        finally:
            db.close()

    def set_float(self, key: str, value: float) -> None:
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(PulseStateEntry, key)
                if row is None:
                    db.add(PulseStateEntry(key=key, value=repr(float(value))))
                else:
                    row.value = repr(float(value))
                    row.updated_at = datetime.utcnow()
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def remove(self, key: str) -> None:
        with self._lock:
            db = self._session_factory()
            try:
                row = db.get(PulseStateEntry, key)
                if row is not None:
                    db.delete(row)
                    db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()
