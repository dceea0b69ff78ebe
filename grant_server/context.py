"""
Application context: every service is constructed once at startup and handed to the
routes by reference through app.state. Nothing is built lazily behind a global.
"""
import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from grant_server import config
from grant_server.code_store import CodeStore, InMemoryCodeStore, SqlCodeStore
from grant_server.database import init_db, make_engine, make_session_factory
from grant_server.keys import KeyRing
from grant_server.refresh_ledger import RefreshLedger
from grant_server.registry import ClientRegistry
from grant_server.service import AuthorizationService
from grant_server.tokens import TokenCodec

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    engine: Engine
    sessions: sessionmaker
    keys: KeyRing
    registry: ClientRegistry
    codes: CodeStore
    codec: TokenCodec
    ledger: RefreshLedger
    service: AuthorizationService


def build_context(
    database_url: str = config.DATABASE_URL,
    *,
    keys: KeyRing | None = None,
    code_store: str = config.CODE_STORE,
    issuer: str = config.ISSUER,
    code_ttl: int = config.CODE_TTL_SECONDS,
    access_ttl: int = config.ACCESS_TOKEN_EXPIRES,
    refresh_ttl: int = config.REFRESH_TOKEN_EXPIRES,
    allow_plain_pkce: bool = config.ALLOW_PLAIN_PKCE,
) -> AppContext:
    """Create tables, load keys and wire the services together."""
    engine = make_engine(database_url)
    init_db(engine)
    sessions = make_session_factory(engine)
    if keys is None:
        keys = KeyRing.from_files(config.SIGNING_KEY_PATH, config.SIGNING_KEY_PREVIOUS_PATH)

    if code_store == "memory":
        codes: CodeStore = InMemoryCodeStore(code_ttl)
    elif code_store == "sql":
        codes = SqlCodeStore(sessions, code_ttl)
    else:
        raise ValueError(f"Unknown code store backing: {code_store!r}")

    registry = ClientRegistry(sessions)
    codec = TokenCodec(issuer)
    ledger = RefreshLedger(sessions)
    service = AuthorizationService(
        registry,
        codes,
        codec,
        keys,
        ledger,
        access_ttl=access_ttl,
        refresh_ttl=refresh_ttl,
        allow_plain_pkce=allow_plain_pkce,
    )
    logger.info("Grant server context ready (code store=%s, kid=%s)", code_store, keys.current.kid)
    return AppContext(engine, sessions, keys, registry, codes, codec, ledger, service)


def get_context(request: Request) -> AppContext:
    """Dependency: the context built at startup."""
    return request.app.state.context


def get_service(request: Request) -> AuthorizationService:
    return request.app.state.context.service
