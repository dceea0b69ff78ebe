"""Tests for the client & scope registry."""
import pytest

from grant_server.errors import InvalidScope
from grant_server.models import Client
from grant_server.registry import ClientRegistry, format_scope, parse_scope


@pytest.fixture
def registry(ctx):
    return ctx.registry


def test_resolve_registered_client(registry):
    client = registry.resolve("c1")
    assert client.client_id == "c1"
    assert client.redirect_uris == ("https://app/cb",)
    assert client.allowed_scopes == frozenset({"read", "write"})
    assert not client.is_confidential


def test_resolve_unknown_and_empty(registry):
    assert registry.resolve("nope") is None
    assert registry.resolve("") is None
    assert registry.resolve(None) is None


def test_resolve_disabled_client(ctx, registry):
    registry.register("off", ["https://off/cb"], ["read"])
    with ctx.sessions() as db:
        db.query(Client).filter(Client.client_id == "off").update({"disabled": True})
        db.commit()
    assert registry.resolve("off") is None


@pytest.mark.parametrize(
    "uri",
    [
        "https://app/cb/",
        "https://app/cb?x=1",
        "https://app/cb/../evil",
        "https://APP/cb",
        "https://app/c",
        "http://app/cb",
        "",
        None,
    ],
)
def test_redirect_uri_exact_match_only(registry, uri):
    client = registry.resolve("c1")
    assert not ClientRegistry.validate_redirect_uri(client, uri)


def test_redirect_uri_registered(registry):
    assert ClientRegistry.validate_redirect_uri(registry.resolve("c1"), "https://app/cb")


def test_narrow_scope_intersection(registry):
    client = registry.resolve("c1")
    assert ClientRegistry.narrow_scope(client, frozenset({"read", "admin"})) == {"read"}


def test_narrow_scope_empty_request_defaults_to_allowed(registry):
    client = registry.resolve("c1")
    assert ClientRegistry.narrow_scope(client, frozenset()) == {"read", "write"}


def test_narrow_scope_empty_intersection_is_invalid(registry):
    client = registry.resolve("c1")
    with pytest.raises(InvalidScope):
        ClientRegistry.narrow_scope(client, frozenset({"admin"}))


def test_confidential_client_authentication(registry):
    client = registry.register("conf", ["https://conf/cb"], ["read"], client_secret="s3cret")
    assert client.is_confidential
    assert ClientRegistry.authenticate(client, "s3cret")
    assert not ClientRegistry.authenticate(client, "wrong")
    assert not ClientRegistry.authenticate(client, None)


def test_public_client_needs_no_secret(registry):
    assert ClientRegistry.authenticate(registry.resolve("c1"), None)


def test_register_is_idempotent(registry):
    again = registry.register("c1", ["https://other/cb"], ["admin"])
    assert again.redirect_uris == ("https://app/cb",)


def test_scope_helpers():
    assert parse_scope("  write read  read ") == {"read", "write"}
    assert parse_scope(None) == frozenset()
    assert format_scope({"write", "read"}) == "read write"
