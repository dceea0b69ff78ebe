"""
Client & scope registry: client lookup, exact redirect URI matching, scope narrowing,
and client_secret checks for confidential clients (RFC 6749 §2.3.1, §3.1.2.3, §3.3).
"""
import json
import logging
from dataclasses import dataclass

import bcrypt
from sqlalchemy.orm import sessionmaker

from grant_server.errors import InvalidScope
from grant_server.models import Client

logger = logging.getLogger(__name__)


def hash_secret(secret: str) -> str:
    # Bcrypt has a 72-byte limit
    raw = secret.encode("utf-8")[:72]
    return bcrypt.hashpw(raw, bcrypt.gensalt()).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))


def parse_scope(scope: str | None) -> frozenset[str]:
    """Space-delimited scope parameter to a set; None or blank is empty."""
    if not scope:
        return frozenset()
    return frozenset(s for s in scope.split() if s)


def format_scope(scopes) -> str:
    return " ".join(sorted(scopes))


@dataclass(frozen=True)
class RegisteredClient:
    """Read-only view of a client row."""

    client_id: str
    redirect_uris: tuple[str, ...]
    allowed_scopes: frozenset[str]
    signing_key_id: str | None = None
    client_secret_hash: str | None = None

    @property
    def is_confidential(self) -> bool:
        return bool(self.client_secret_hash)

    @classmethod
    def from_row(cls, row: Client) -> "RegisteredClient":
        return cls(
            client_id=row.client_id,
            redirect_uris=tuple(row.get_redirect_uris_list()),
            allowed_scopes=row.get_allowed_scopes(),
            signing_key_id=row.signing_key_id,
            client_secret_hash=row.client_secret_hash,
        )


class ClientRegistry:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def resolve(self, client_id: str | None) -> RegisteredClient | None:
        """Registered, enabled client or None."""
        if not client_id:
            return None
        with self._sessions() as db:
            row = db.query(Client).filter(Client.client_id == client_id).first()
            if row is None or row.disabled:
                return None
            return RegisteredClient.from_row(row)

    @staticmethod
    def validate_redirect_uri(client: RegisteredClient, uri: str | None) -> bool:
        # Exact string match only: no prefix, wildcard or normalization
        return bool(uri) and uri in client.redirect_uris

    @staticmethod
    def narrow_scope(client: RegisteredClient, requested: frozenset[str]) -> frozenset[str]:
        """
        Granted scope = requested ∩ allowed. Empty request means the full allowed set.
        An empty result is an error, never a silent grant of nothing.
        """
        granted = client.allowed_scopes if not requested else requested & client.allowed_scopes
        if not granted:
            raise InvalidScope()
        return frozenset(granted)

    @staticmethod
    def authenticate(client: RegisteredClient, client_secret: str | None) -> bool:
        """Public clients always pass; confidential clients need the right secret."""
        if not client.is_confidential:
            return True
        if not client_secret:
            return False
        return verify_secret(client_secret, client.client_secret_hash)

    def register(
        self,
        client_id: str,
        redirect_uris: list[str],
        allowed_scopes: list[str],
        *,
        client_secret: str | None = None,
        signing_key_id: str | None = None,
    ) -> RegisteredClient:
        """Administrative helper: insert a client. Existing client ids are left untouched."""
        with self._sessions() as db:
            row = db.query(Client).filter(Client.client_id == client_id).first()
            if row is None:
                row = Client(
                    client_id=client_id,
                    redirect_uris=json.dumps(list(redirect_uris)),
                    allowed_scopes=json.dumps(sorted(set(allowed_scopes))),
                    signing_key_id=signing_key_id,
                    client_secret_hash=hash_secret(client_secret) if client_secret else None,
                )
                db.add(row)
                db.commit()
                logger.info("Registered client: %s (confidential=%s)", client_id, bool(client_secret))
            else:
                logger.debug("Client already exists: %s", client_id)
            return RegisteredClient.from_row(row)
