"""Tests for the refresh token ledger: rotation, family revocation, purging."""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from grant_server.database import init_db, make_engine, make_session_factory
from grant_server.models import RefreshToken
from grant_server.refresh_ledger import GRANT_MARKER_RETENTION, RefreshLedger
from grant_server.tokens import RefreshTokenClaims


def _claims(grant_id="g1"):
    return RefreshTokenClaims(client_id="c1", scope=("read",), grant_id=grant_id, user_id="user42")


@pytest.fixture
def now():
    return [datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)]


@pytest.fixture
def ledger(ctx, now):
    return RefreshLedger(ctx.sessions, clock=lambda: now[0])


def _live_rows(ctx, grant_id):
    with ctx.sessions() as db:
        return db.query(RefreshToken).filter(RefreshToken.grant_id == grant_id, RefreshToken.revoked.is_(False)).count()


def test_redeem_once(ledger, now):
    claims = _claims()
    assert ledger.record(claims, now[0] + timedelta(days=1))
    assert ledger.redeem(claims.jti)
    assert not ledger.redeem(claims.jti)
    assert ledger.is_known(claims.jti)
    assert not ledger.is_known("never-issued")


def test_redeem_expired(ledger, now):
    claims = _claims()
    ledger.record(claims, now[0] + timedelta(seconds=10))
    now[0] += timedelta(seconds=10)
    assert not ledger.redeem(claims.jti)


def test_revoke_grant_only_touches_family(ctx, ledger, now):
    ledger.record(_claims("g1"), now[0] + timedelta(days=1))
    ledger.record(_claims("g1"), now[0] + timedelta(days=1))
    other = _claims("g2")
    ledger.record(other, now[0] + timedelta(days=1))
    assert ledger.revoke_grant("g1") == 2
    assert ledger.revoke_grant("g1") == 0
    assert _live_rows(ctx, "g1") == 0
    assert ledger.redeem(other.jti)


def test_record_after_revocation_is_refused(ctx, ledger, now):
    ledger.revoke_grant("g1")
    late = _claims("g1")
    assert not ledger.record(late, now[0] + timedelta(days=1))
    assert ledger.is_known(late.jti)
    assert not ledger.redeem(late.jti)
    assert _live_rows(ctx, "g1") == 0


def test_record_purges_expired_tokens(ledger, now):
    old = _claims()
    ledger.record(old, now[0] + timedelta(seconds=30))
    now[0] += timedelta(seconds=31)
    new = _claims()
    assert ledger.record(new, now[0] + timedelta(days=1))  # record() purges lazily
    assert not ledger.is_known(old.jti)
    assert ledger.is_known(new.jti)


def test_revoked_grant_marker_expires(ledger, now):
    ledger.revoke_grant("g1")
    now[0] += GRANT_MARKER_RETENTION - timedelta(seconds=1)
    assert ledger.purge_expired() == 0
    assert not ledger.record(_claims("g1"), now[0] + timedelta(days=1))
    now[0] += timedelta(seconds=1)
    assert ledger.purge_expired() >= 1
    assert ledger.record(_claims("g1"), now[0] + timedelta(days=1))


def test_concurrent_redeem_has_one_winner(tmp_path):
    # File database so each thread gets its own connection
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    ledger = RefreshLedger(make_session_factory(engine))
    workers = 5
    try:
        for _ in range(5):
            claims = _claims()
            ledger.record(claims, datetime.now(timezone.utc) + timedelta(days=1))
            barrier = threading.Barrier(workers)

            def attempt(_):
                barrier.wait()
                return ledger.redeem(claims.jti)

            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(attempt, range(workers)))
            assert results.count(True) == 1
    finally:
        engine.dispose()
