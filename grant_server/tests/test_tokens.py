"""Tests for the token codec."""
import pytest

from grant_server.keys import KeyRing, SigningKey, generate_signing_key
from grant_server.tokens import (
    AccessTokenClaims,
    AuthorizationCodeClaims,
    InvalidSignature,
    MalformedToken,
    RefreshTokenClaims,
    SigningError,
    TokenCodec,
    TokenExpired,
)


@pytest.fixture
def codec():
    return TokenCodec("https://as.test")


@pytest.fixture
def access_claims():
    return AccessTokenClaims(client_id="c1", scope=("read", "write"), grant_id="g1", user_id="user42")


def test_encode_decode_round_trip(codec, signing_key, access_claims):
    token = codec.encode(access_claims, signing_key, 60)
    assert token.count(".") == 2
    decoded = codec.decode(token, signing_key)
    assert decoded.claims == access_claims
    assert decoded.expires_at - decoded.issued_at == 60


def test_decode_keeps_variant(codec, signing_key):
    claims = RefreshTokenClaims(client_id="c1", scope=("read",), grant_id="g1", user_id=None)
    decoded = codec.decode(codec.encode(claims, signing_key, 60), signing_key)
    assert isinstance(decoded.claims, RefreshTokenClaims)
    assert decoded.claims.kind == "refresh"
    assert decoded.claims.user_id is None


def test_each_encode_differs(codec, signing_key):
    a = codec.encode(AccessTokenClaims("c1", ("read",), "g1", "u"), signing_key, 60)
    b = codec.encode(AccessTokenClaims("c1", ("read",), "g1", "u"), signing_key, 60)
    assert a != b  # fresh jti per claim set


def test_header_carries_kid(codec, signing_key, access_claims):
    token = codec.encode(access_claims, signing_key, 60)
    assert TokenCodec.peek_key_id(token) == signing_key.kid


def test_decode_with_other_key_is_invalid_signature(codec, signing_key, access_claims):
    other = generate_signing_key(signing_key.kid)
    token = codec.encode(access_claims, other, 60)
    with pytest.raises(InvalidSignature):
        codec.decode(token, signing_key)


def test_decode_unknown_key_is_invalid_signature(codec, signing_key, access_claims):
    token = codec.encode(access_claims, signing_key, 60)
    with pytest.raises(InvalidSignature):
        codec.decode(token, KeyRing(signing_key).get("no-such-kid"))


def test_decode_expired(codec, signing_key, access_claims):
    token = codec.encode(access_claims, signing_key, -10)
    with pytest.raises(TokenExpired):
        codec.decode(token, signing_key)


def test_tampered_payload_is_invalid_signature(codec, signing_key, access_claims):
    import base64
    import json

    header, payload, sig = codec.encode(access_claims, signing_key, 60).split(".")
    data = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    data["scope"] = "read write admin"
    forged = base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()
    with pytest.raises(InvalidSignature):
        codec.decode(f"{header}.{forged}.{sig}", signing_key)


@pytest.mark.parametrize("token", ["", "not-a-jwt", "a.b.c", "x.y"])
def test_decode_garbage_is_malformed(codec, signing_key, token):
    with pytest.raises(MalformedToken):
        codec.decode(token, signing_key)


def test_peek_key_id_garbage_is_malformed():
    with pytest.raises(MalformedToken):
        TokenCodec.peek_key_id("not-a-jwt")


def test_wrong_issuer_is_rejected(signing_key, access_claims):
    token = TokenCodec("https://other.test").encode(access_claims, signing_key, 60)
    with pytest.raises(MalformedToken):
        TokenCodec("https://as.test").decode(token, signing_key)


def test_failure_kinds_are_distinct():
    kinds = {InvalidSignature.kind, TokenExpired.kind, MalformedToken.kind}
    assert len(kinds) == 3


def test_encode_without_key_is_signing_error(codec, access_claims):
    with pytest.raises(SigningError):
        codec.encode(access_claims, None, 60)


def test_encode_with_bad_key_material_is_signing_error(codec, access_claims):
    with pytest.raises(SigningError):
        codec.encode(access_claims, SigningKey("bad", "not a key"), 60)


def test_authorization_code_claims_are_never_signed(codec, signing_key):
    claims = AuthorizationCodeClaims(
        client_id="c1",
        user_id="user42",
        scope=("read",),
        redirect_uri="https://app/cb",
        code_challenge="c" * 43,
        code_challenge_method="S256",
    )
    assert claims.kind == "authorization_code"
    with pytest.raises(SigningError):
        codec.encode(claims, signing_key, 60)


def test_decode_rejects_authorization_code_kind(codec, signing_key):
    import jwt

    payload = {
        "iss": "https://as.test",
        "client_id": "c1",
        "grant_id": "g1",
        "jti": "j1",
        "kind": "authorization_code",
        "iat": 1,
        "exp": 4102444800,
    }
    token = jwt.encode(payload, signing_key.private_key, algorithm="RS256", headers={"kid": signing_key.kid})
    with pytest.raises(MalformedToken):
        codec.decode(token, signing_key)
