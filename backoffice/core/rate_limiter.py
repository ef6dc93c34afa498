from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backoffice.core.config import RATE_LIMIT_BACKEND

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitPolicy:
    scope: str
    max_attempts: int
    lockout_seconds: int


STAFF_PIN_POLICY = RateLimitPolicy(scope="staff-pin", max_attempts=3, lockout_seconds=15 * 60)
STAFF_SIGNIN_POLICY = RateLimitPolicy(scope="staff-signin", max_attempts=3, lockout_seconds=15 * 60)
ADMIN_PIN_POLICY = RateLimitPolicy(scope="admin-pin", max_attempts=5, lockout_seconds=30 * 60)


@dataclass
class RateLimitRecord:
    attempts: int
    last_attempt: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int
    lockout_seconds_remaining: float = 0.0

    @property
    def minutes_remaining(self) -> int:
        if self.lockout_seconds_remaining <= 0:
            return 0
        return max(1, math.ceil(self.lockout_seconds_remaining / 60))

    def as_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "remaining_attempts": self.remaining_attempts,
            "lockout_minutes_remaining": self.minutes_remaining,
        }


class RateLimitStore(ABC):
    """Backing storage of attempt counters.

    ``register_failure`` must be atomic per key: concurrent failures for the
    same key each observe their own increment.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[RateLimitRecord]:
        """Current record for the key, if any."""

    @abstractmethod
    def register_failure(self, key: str, *, now: float, window_seconds: int) -> RateLimitRecord:
        """Increment the counter, restarting it when the last failure is older than the window."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget the key."""

    @abstractmethod
    def purge(self, *, older_than: float, prefix: str = "") -> int:
        """Drop records under ``prefix`` whose last failure happened before ``older_than``."""


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local counters. Lockouts do not synchronize between instances."""

    def __init__(self) -> None:
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[RateLimitRecord]:
        with self._lock:
            record = self._records.get(key)
            return RateLimitRecord(record.attempts, record.last_attempt) if record else None

    def register_failure(self, key: str, *, now: float, window_seconds: int) -> RateLimitRecord:
        with self._lock:
            record = self._records.get(key)
            if record is None or now - record.last_attempt >= window_seconds:
                record = RateLimitRecord(attempts=0, last_attempt=now)
                self._records[key] = record
            record.attempts += 1
            record.last_attempt = now
            return RateLimitRecord(record.attempts, record.last_attempt)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def purge(self, *, older_than: float, prefix: str = "") -> int:
        with self._lock:
            stale = [
                key
                for key, record in self._records.items()
                if key.startswith(prefix) and record.last_attempt < older_than
            ]
            for key in stale:
                del self._records[key]
            return len(stale)


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)


def _to_timestamp(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


class DatabaseRateLimitStore(RateLimitStore):
    """Counters kept in ``pin_attempts`` so every instance shares one lockout state.

    Each call runs in its own short transaction, locking the row it updates.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        if session_factory is None:
            from backoffice.core.database import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def _row(self, db: Session, key: str, *, for_update: bool = False):
        from backoffice.models.pin_attempt import PinAttempt

        query = db.query(PinAttempt).filter(PinAttempt.key == key)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get(self, key: str) -> Optional[RateLimitRecord]:
        db = self._session_factory()
        try:
            row = self._row(db, key)
            if row is None:
                return None
            return RateLimitRecord(attempts=row.attempts, last_attempt=_to_timestamp(row.last_attempt_at))
        finally:
            db.close()

    def register_failure(self, key: str, *, now: float, window_seconds: int) -> RateLimitRecord:
        from backoffice.models.pin_attempt import PinAttempt

        retried = False
        while True:
            db = self._session_factory()
            try:
                row = self._row(db, key, for_update=True)
                if row is None:
                    row = PinAttempt(key=key, attempts=0, last_attempt_at=_to_datetime(now))
                    db.add(row)
                elif now - _to_timestamp(row.last_attempt_at) >= window_seconds:
                    row.attempts = 0
                row.attempts += 1
                row.last_attempt_at = _to_datetime(now)
                db.commit()
                return RateLimitRecord(attempts=row.attempts, last_attempt=now)
            except IntegrityError:
                # Lost the insert race for a new key; the second pass updates the winner's row.
                db.rollback()
                if retried:
                    raise
                retried = True
            finally:
                db.close()

    def delete(self, key: str) -> None:
        from backoffice.models.pin_attempt import PinAttempt

        db = self._session_factory()
        try:
            db.query(PinAttempt).filter(PinAttempt.key == key).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

    def purge(self, *, older_than: float, prefix: str = "") -> int:
        from backoffice.models.pin_attempt import PinAttempt

        db = self._session_factory()
        try:
            query = db.query(PinAttempt).filter(PinAttempt.last_attempt_at < _to_datetime(older_than))
            if prefix:
                query = query.filter(PinAttempt.key.startswith(prefix))
            removed = query.delete(synchronize_session=False)
            db.commit()
            return int(removed or 0)
        finally:
            db.close()


class PinRateLimiter:
    """Failure counter with lockout for one credential scope.

    Identifiers are namespaced by the policy scope, so the same identifier
    used by two flows never shares a counter.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        store: Optional[RateLimitStore] = None,
        *,
        clock: Clock = time.time,
    ) -> None:
        self.policy = policy
        self.store = store or get_rate_limit_store()
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f"{self.policy.scope}:{identifier}"

    def _decision(self, record: Optional[RateLimitRecord], now: float) -> RateLimitDecision:
        attempts = record.attempts if record else 0
        remaining = max(0, self.policy.max_attempts - attempts)
        if record is not None and attempts >= self.policy.max_attempts:
            elapsed = now - record.last_attempt
            if elapsed < self.policy.lockout_seconds:
                return RateLimitDecision(
                    allowed=False,
                    remaining_attempts=0,
                    lockout_seconds_remaining=self.policy.lockout_seconds - elapsed,
                )
        return RateLimitDecision(allowed=True, remaining_attempts=remaining)

    def check(self, identifier: str) -> RateLimitDecision:
        key = self._key(identifier)
        now = self._clock()
        record = self.store.get(key)
        if record is not None and now - record.last_attempt >= self.policy.lockout_seconds:
            self.store.delete(key)
            record = None
        return self._decision(record, now)

    def record_failure(self, identifier: str) -> RateLimitDecision:
        now = self._clock()
        record = self.store.register_failure(
            self._key(identifier),
            now=now,
            window_seconds=self.policy.lockout_seconds,
        )
        decision = self._decision(record, now)
        if not decision.allowed:
            logger.warning(
                "Rate limit lockout scope=%s attempts=%s lockout_seconds=%s",
                self.policy.scope,
                record.attempts,
                self.policy.lockout_seconds,
            )
        return decision

    def clear(self, identifier: str) -> None:
        self.store.delete(self._key(identifier))

    def cleanup_expired(self, *, grace_seconds: int = 60 * 60) -> int:
        """Remove records whose lockout ended more than ``grace_seconds`` ago."""
        cutoff = self._clock() - self.policy.lockout_seconds - grace_seconds
        return self.store.purge(older_than=cutoff, prefix=f"{self.policy.scope}:")


def build_rate_limit_store(backend: Optional[str] = None) -> RateLimitStore:
    backend = (backend or RATE_LIMIT_BACKEND).strip().lower()
    if backend == "database":
        return DatabaseRateLimitStore()
    return InMemoryRateLimitStore()


_store: Optional[RateLimitStore] = None
_store_lock = Lock()


def get_rate_limit_store() -> RateLimitStore:
    global _store
    with _store_lock:
        if _store is None:
            _store = build_rate_limit_store()
        return _store


def set_rate_limit_store(store: Optional[RateLimitStore]) -> None:
    global _store
    with _store_lock:
        _store = store
