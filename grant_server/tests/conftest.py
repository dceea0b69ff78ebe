"""
Pytest configuration for grant_server. In-memory SQLite and an in-memory signing key,
so tests don't touch the filesystem.
"""
import hashlib
import os
import secrets
from base64 import urlsafe_b64encode

# Must be set before grant_server.config is imported
os.environ["AUTH_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_SIGNING_KEY_PATH"] = ""
for _var in ("OAUTH_CLIENT_ID", "OAUTH_REDIRECT_URI", "OAUTH_REDIRECT_URIS", "OAUTH_SEED_CLIENT_SECRET", "OAUTH_CLIENT_SCOPES"):
    os.environ.pop(_var, None)

import pytest
from fastapi.testclient import TestClient

from grant_server.context import build_context
from grant_server.keys import KeyRing, generate_signing_key
from grant_server.main import create_app

TEST_ISSUER = "https://as.test"
REDIRECT_URI = "https://app/cb"


@pytest.fixture(scope="session")
def signing_key():
    # RSA generation is slow; one key for the whole run
    return generate_signing_key()


@pytest.fixture
def ctx(signing_key):
    context = build_context(
        "sqlite:///:memory:",
        keys=KeyRing(signing_key),
        code_store="sql",
        issuer=TEST_ISSUER,
        code_ttl=60,
        access_ttl=3600,
        refresh_ttl=30 * 24 * 3600,
    )
    context.registry.register("c1", [REDIRECT_URI], ["read", "write"])
    yield context
    context.engine.dispose()


@pytest.fixture
def service(ctx):
    return ctx.service


@pytest.fixture
def client(ctx):
    return TestClient(create_app(ctx))


@pytest.fixture
def pkce():
    """(code_verifier, S256 code_challenge)."""
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return verifier, urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
