"""
Server-side ledger of issued refresh tokens, keyed by jti.
Refresh tokens are signed JWTs; the ledger adds what a signature cannot express:
rotation (each token is redeemable once) and revocation of a whole grant family.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from grant_server.models import RefreshToken, RevokedGrant
from grant_server.tokens import RefreshTokenClaims

logger = logging.getLogger(__name__)

# Revoked-grant markers only have to outlast requests that were in flight at revocation
GRANT_MARKER_RETENTION = timedelta(days=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RefreshLedger:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = _utc_now):
        self._sessions = session_factory
        self._clock = clock

    def record(self, claims: RefreshTokenClaims, expires_at: datetime) -> bool:
        """
        Store a newly issued refresh token. False if its grant family was revoked first;
        the row is then stored already revoked.
        """
        self.purge_expired()
        with self._sessions() as db:
            db.add(
                RefreshToken(
                    jti=claims.jti,
                    grant_id=claims.grant_id,
                    client_id=claims.client_id,
                    user_id=claims.user_id,
                    scope=" ".join(claims.scope),
                    expires_at=expires_at,
                )
            )
            db.commit()
        # Checked after the insert: revoke_grant() writes its marker before updating rows,
        # so either that update sees this row or this check sees the marker
        if not self._grant_revoked(claims.grant_id):
            return True
        self.revoke_grant(claims.grant_id)
        return False

    def redeem(self, jti: str) -> bool:
        """Mark an active refresh token revoked. True only for the single caller that flipped it."""
        now = self._clock()
        with self._sessions() as db:
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.jti == jti, RefreshToken.revoked.is_(False), RefreshToken.expires_at > now)
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        return result.rowcount == 1

    def is_known(self, jti: str) -> bool:
        with self._sessions() as db:
            return db.query(RefreshToken.id).filter(RefreshToken.jti == jti).first() is not None

    def revoke_grant(self, grant_id: str) -> int:
        """Revoke every refresh token in a grant family, including ones recorded later."""
        with self._sessions() as db:
            db.add(RevokedGrant(grant_id=grant_id, revoked_at=self._clock()))
            try:
                db.commit()
            except IntegrityError:
                # Already marked
                db.rollback()
        with self._sessions() as db:
            result = db.execute(
                update(RefreshToken)
                .where(RefreshToken.grant_id == grant_id, RefreshToken.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if result.rowcount:
            logger.info("Revoked %d refresh token(s) for grant %s", result.rowcount, grant_id)
        return result.rowcount

    def purge_expired(self) -> int:
        """Drop refresh tokens past expires_at and stale revoked-grant markers."""
        now = self._clock()
        with self._sessions() as db:
            tokens = db.execute(
                delete(RefreshToken)
                .where(RefreshToken.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            markers = db.execute(
                delete(RevokedGrant)
                .where(RevokedGrant.revoked_at <= now - GRANT_MARKER_RETENTION)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        if tokens.rowcount:
            logger.debug("Purged %d expired refresh tokens", tokens.rowcount)
        return tokens.rowcount + markers.rowcount

    def _grant_revoked(self, grant_id: str) -> bool:
        with self._sessions() as db:
            return db.get(RevokedGrant, grant_id) is not None
