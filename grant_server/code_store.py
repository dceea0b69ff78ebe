"""
Authorization code store. A code is pending until the first successful consume(),
after which it is terminal; a pending code past expires_at is terminal too, and to
callers looks exactly like a code that never existed.

Two backings: SQL (conditional UPDATE, safe across workers sharing one database)
and in-memory (lock-protected, single process).
"""
import hashlib
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import and_, delete, or_, update
from sqlalchemy.orm import sessionmaker

from grant_server.models import AuthorizationCodeRow
from grant_server.tokens import AuthorizationCodeClaims

logger = logging.getLogger(__name__)

# Consumed codes are remembered this long past expiry so replays can still be detected
REPLAY_WINDOW = timedelta(days=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo; everything is stored as UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class AuthorizationCode:
    code: str
    client_id: str
    user_id: str
    redirect_uri: str
    scope: tuple[str, ...]
    code_challenge: str
    code_challenge_method: str
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None

    @property
    def claims(self) -> AuthorizationCodeClaims:
        return AuthorizationCodeClaims(
            client_id=self.client_id,
            user_id=self.user_id,
            scope=self.scope,
            redirect_uri=self.redirect_uri,
            code_challenge=self.code_challenge,
            code_challenge_method=self.code_challenge_method,
        )

    @property
    def grant_id(self) -> str:
        # Tokens minted from this code form one family keyed by the code's fingerprint
        return hashlib.sha256(self.code.encode("utf-8")).hexdigest()[:32]


class CodeStore(ABC):
    """Interface shared by both backings."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] = _utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(
        self,
        client_id: str,
        user_id: str,
        redirect_uri: str,
        scope: tuple[str, ...],
        code_challenge: str,
        code_challenge_method: str,
    ) -> str:
        """Store a new pending code and return only its value."""
        self.purge_expired()
        now = self._clock()
        record = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            scope=tuple(scope),
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        self._save(record)
        return record.code

    @abstractmethod
    def consume(self, code: str) -> AuthorizationCode | None:
        """Atomically move a pending, unexpired code to consumed. Exactly one caller wins."""

    @abstractmethod
    def find_consumed(self, code: str) -> AuthorizationCode | None:
        """Previously consumed record for code, if still remembered."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Remove expired pending codes and consumed codes past the replay window."""

    @abstractmethod
    def _save(self, record: AuthorizationCode) -> None:
        """Persist a new pending record."""


class SqlCodeStore(CodeStore):
    def __init__(self, session_factory: sessionmaker, ttl_seconds: int, clock: Callable[[], datetime] = _utc_now):
        super().__init__(ttl_seconds, clock)
        self._sessions = session_factory

    def _save(self, record: AuthorizationCode) -> None:
        with self._sessions() as db:
            db.add(
                AuthorizationCodeRow(
                    code=record.code,
                    client_id=record.client_id,
                    user_id=record.user_id,
                    redirect_uri=record.redirect_uri,
                    scope=" ".join(record.scope),
                    code_challenge=record.code_challenge,
                    code_challenge_method=record.code_challenge_method,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                )
            )
            db.commit()

    @staticmethod
    def _to_record(row: AuthorizationCodeRow) -> AuthorizationCode:
        return AuthorizationCode(
            code=row.code,
            client_id=row.client_id,
            user_id=row.user_id,
            redirect_uri=row.redirect_uri,
            scope=tuple(row.scope.split()),
            code_challenge=row.code_challenge,
            code_challenge_method=row.code_challenge_method,
            issued_at=_as_utc(row.issued_at),
            expires_at=_as_utc(row.expires_at),
            consumed_at=_as_utc(row.consumed_at) if row.consumed_at else None,
        )

    def consume(self, code: str) -> AuthorizationCode | None:
        if not code:
            return None
        now = self._clock()
        with self._sessions() as db:
            # Compare-and-swap: only the statement that flips consumed_at from NULL sees rowcount 1
            result = db.execute(
                update(AuthorizationCodeRow)
                .where(
                    AuthorizationCodeRow.code == code,
                    AuthorizationCodeRow.consumed_at.is_(None),
                    AuthorizationCodeRow.expires_at > now,
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                return None
            row = db.query(AuthorizationCodeRow).filter(AuthorizationCodeRow.code == code).one()
            record = self._to_record(row)
            db.commit()
        return record

    def find_consumed(self, code: str) -> AuthorizationCode | None:
        if not code:
            return None
        with self._sessions() as db:
            row = (
                db.query(AuthorizationCodeRow)
                .filter(AuthorizationCodeRow.code == code, AuthorizationCodeRow.consumed_at.is_not(None))
                .first()
            )
            return self._to_record(row) if row else None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._sessions() as db:
            result = db.execute(
                delete(AuthorizationCodeRow)
                .where(
                    or_(
                        and_(AuthorizationCodeRow.consumed_at.is_(None), AuthorizationCodeRow.expires_at <= now),
                        AuthorizationCodeRow.expires_at <= now - REPLAY_WINDOW,
                    )
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount:
            logger.debug("Purged %d expired authorization codes", result.rowcount)
        return result.rowcount


class InMemoryCodeStore(CodeStore):
    """Process-local store. Not shared between workers."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], datetime] = _utc_now):
        super().__init__(ttl_seconds, clock)
        self._pending: dict[str, AuthorizationCode] = {}
        self._consumed: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()

    def _save(self, record: AuthorizationCode) -> None:
        with self._lock:
            self._pending[record.code] = record

    def consume(self, code: str) -> AuthorizationCode | None:
        now = self._clock()
        with self._lock:
            record = self._pending.pop(code, None)
            if record is None or record.expires_at <= now:
                return None
            record = replace(record, consumed_at=now)
            self._consumed[code] = record
            return record

    def find_consumed(self, code: str) -> AuthorizationCode | None:
        with self._lock:
            return self._consumed.get(code)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [c for c, r in self._pending.items() if r.expires_at <= now]
            stale_consumed = [c for c, r in self._consumed.items() if r.expires_at <= now - REPLAY_WINDOW]
            for c in stale:
                del self._pending[c]
            for c in stale_consumed:
                del self._consumed[c]
        return len(stale) + len(stale_consumed)
