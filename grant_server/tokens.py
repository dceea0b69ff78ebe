"""
Token codec: signed, time-bounded JWTs (RS256) for access and refresh tokens.
No OAuth semantics here; the authorization service decides what to issue and when.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal, Union

import jwt

from grant_server.keys import SigningKey

logger = logging.getLogger(__name__)

ALGORITHM = "RS256"


class TokenError(Exception):
    """A token could not be accepted. Subclasses say why; callers must not tell the bearer."""

    kind = "invalid"


class InvalidSignature(TokenError):
    kind = "bad_signature"


class TokenExpired(TokenError):
    kind = "expired"


class MalformedToken(TokenError):
    kind = "malformed"


class SigningError(Exception):
    """Internal: bad key material or unserializable claims. Never a client error."""


def _new_jti() -> str:
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class AccessTokenClaims:
    client_id: str
    scope: tuple[str, ...]
    grant_id: str
    user_id: str | None = None
    jti: str = field(default_factory=_new_jti)
    kind: Literal["access"] = "access"


@dataclass(frozen=True)
class RefreshTokenClaims:
    client_id: str
    scope: tuple[str, ...]
    grant_id: str
    user_id: str | None = None
    jti: str = field(default_factory=_new_jti)
    kind: Literal["refresh"] = "refresh"


@dataclass(frozen=True)
class AuthorizationCodeClaims:
    """What an authorization code stands for. Lives only inside the code store; never signed."""

    client_id: str
    user_id: str
    scope: tuple[str, ...]
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    kind: Literal["authorization_code"] = "authorization_code"


# Claim sets that travel as signed tokens
TokenClaims = Union[AccessTokenClaims, RefreshTokenClaims]

_CLAIM_TYPES: dict[str, type] = {"access": AccessTokenClaims, "refresh": RefreshTokenClaims}


@dataclass(frozen=True)
class DecodedToken:
    """Verified claims plus the registered times from the payload."""

    claims: TokenClaims
    issued_at: int
    expires_at: int


class TokenCodec:
    """Encode claim sets into signed JWTs and verify them back. Stateless; thread safe."""

    def __init__(self, issuer: str):
        self.issuer = issuer

    def encode(self, claims: TokenClaims, key: SigningKey | None, ttl: int) -> str:
        """Sign claims with key; the token expires ttl seconds from now."""
        if claims.kind not in _CLAIM_TYPES:
            raise SigningError(f"{claims.kind} claims are not issued as tokens")
        if key is None:
            raise SigningError("no signing key")
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "aud": claims.client_id,
            "client_id": claims.client_id,
            "scope": " ".join(claims.scope),
            "kind": claims.kind,
            "grant_id": claims.grant_id,
            "jti": claims.jti,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        }
        if claims.user_id is not None:
            payload["sub"] = claims.user_id
        try:
            token = jwt.encode(
                payload,
                key.private_key,
                algorithm=ALGORITHM,
                headers={"kid": key.kid, "typ": "JWT"},
            )
        except (TypeError, ValueError, jwt.PyJWTError) as e:
            raise SigningError(f"could not sign {claims.kind} token") from e
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def decode(self, token: str, key: SigningKey | None, audience: str | None = None) -> DecodedToken:
        """
        Verify signature, issuer and expiry; return the claims.
        Raises InvalidSignature, TokenExpired or MalformedToken.
        """
        if key is None:
            # Unknown kid: nothing we hold could have signed it
            raise InvalidSignature("no key for token")
        try:
            payload = jwt.decode(
                token,
                key.public_key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                audience=audience,
                options={"require": ["exp", "iat", "kind"], "verify_aud": audience is not None},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpired(str(e)) from e
        except jwt.InvalidSignatureError as e:
            raise InvalidSignature(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise MalformedToken(str(e)) from e
        return DecodedToken(self._claims_from_payload(payload), payload["iat"], payload["exp"])

    @staticmethod
    def peek_key_id(token: str) -> str | None:
        """kid from the unverified header, used only to pick the verification key."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedToken(str(e)) from e
        kid = header.get("kid")
        return kid if isinstance(kid, str) else None

    @staticmethod
    def _claims_from_payload(payload: dict) -> TokenClaims:
        claim_type = _CLAIM_TYPES.get(payload.get("kind"))
        client_id = payload.get("client_id")
        grant_id = payload.get("grant_id")
        jti = payload.get("jti")
        if claim_type is None or not isinstance(client_id, str) or not isinstance(grant_id, str) or not isinstance(jti, str):
            raise MalformedToken("unexpected claim shape")
        scope = payload.get("scope") or ""
        if not isinstance(scope, str):
            raise MalformedToken("scope must be a string")
        return claim_type(
            client_id=client_id,
            scope=tuple(scope.split()),
            grant_id=grant_id,
            user_id=payload.get("sub"),
            jti=jti,
        )
