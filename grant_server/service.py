"""
Authorization service: the authorization-code grant with PKCE (RFC 6749 §4.1, RFC 7636),
refresh with rotation (RFC 6749 §6), and access-token validation for resource routes.

Every rejection fails closed. Grant failures are reported as a bare invalid_grant
whatever the reason; the reason only goes to the debug log.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from grant_server.code_store import CodeStore
from grant_server.errors import (
    InsufficientScope,
    InvalidClient,
    InvalidGrant,
    InvalidRedirectUri,
    InvalidRequest,
    InvalidScope,
    InvalidToken,
)
from grant_server.keys import KeyRing
from grant_server.pkce import METHOD_PLAIN, supported_methods, valid_challenge, verify_pkce
from grant_server.refresh_ledger import RefreshLedger
from grant_server.registry import ClientRegistry, RegisteredClient, format_scope, parse_scope
from grant_server.tokens import (
    AccessTokenClaims,
    DecodedToken,
    RefreshTokenClaims,
    SigningError,
    TokenCodec,
    TokenError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    scope: str
    token_type: str = "bearer"

    def to_response(self) -> dict:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "refresh_token": self.refresh_token,
        }


def _scope_set(scope: str | Iterable[str] | None) -> frozenset[str]:
    if scope is None or isinstance(scope, str):
        return parse_scope(scope)
    return frozenset(s for s in scope if s)


class AuthorizationService:
    def __init__(
        self,
        registry: ClientRegistry,
        codes: CodeStore,
        codec: TokenCodec,
        keys: KeyRing,
        ledger: RefreshLedger,
        *,
        access_ttl: int,
        refresh_ttl: int,
        allow_plain_pkce: bool = True,
    ):
        self.registry = registry
        self.codes = codes
        self.codec = codec
        self.keys = keys
        self.ledger = ledger
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.pkce_methods = supported_methods(allow_plain_pkce)

    # --- authorization endpoint ---

    def check_redirect(self, client_id: str | None, redirect_uri: str | None) -> RegisteredClient:
        """
        Validate client and exact redirect URI. Until this passes, errors must be shown
        to the user agent directly and never sent to redirect_uri.
        """
        client = self.registry.resolve(client_id)
        if client is None:
            raise InvalidClient("Unknown client")
        if not self.registry.validate_redirect_uri(client, redirect_uri):
            raise InvalidRedirectUri()
        return client

    def authorize(
        self,
        client_id: str | None,
        redirect_uri: str | None,
        requested_scope: str | Iterable[str] | None,
        user_id: str | None,
        code_challenge: str | None,
        code_challenge_method: str | None = None,
    ) -> str:
        """Issue an authorization code for an authenticated user. Returns the code value only."""
        client = self.check_redirect(client_id, redirect_uri)
        granted = self.registry.narrow_scope(client, _scope_set(requested_scope))

        # RFC 7636 §4.3: method defaults to plain when omitted
        method = code_challenge_method or METHOD_PLAIN
        if method not in self.pkce_methods:
            raise InvalidRequest("Unsupported code_challenge_method")
        if not code_challenge:
            raise InvalidRequest("code_challenge is required")
        if not valid_challenge(code_challenge, method):
            raise InvalidRequest(f"code_challenge is not a valid {method} challenge")
        if not user_id:
            raise InvalidRequest("User is not authenticated")

        code = self.codes.create(
            client_id=client.client_id,
            user_id=user_id,
            redirect_uri=redirect_uri,
            scope=tuple(sorted(granted)),
            code_challenge=code_challenge,
            code_challenge_method=method,
        )
        logger.info("Authorization code issued: client_id=%s user=%s scope=%s", client.client_id, user_id, format_scope(granted))
        return code

    # --- token endpoint ---

    def authenticate_client(self, client_id: str | None, client_secret: str | None) -> RegisteredClient:
        client = self.registry.resolve(client_id)
        if client is None or not self.registry.authenticate(client, client_secret):
            raise InvalidClient()
        return client

    def exchange_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str,
        client_secret: str | None = None,
    ) -> TokenPair:
        """
        Redeem an authorization code. Unknown, expired, replayed, substituted and
        PKCE-failing codes all end in the same InvalidGrant.
        """
        client = self.authenticate_client(client_id, client_secret)

        record = self.codes.consume(code)
        if record is None:
            replayed = self.codes.find_consumed(code) if code else None
            if replayed is not None:
                # A second presentation means the code leaked; kill what it already produced
                logger.warning("Authorization code replay: client_id=%s user=%s", replayed.client_id, replayed.user_id)
                self.ledger.revoke_grant(replayed.grant_id)
            else:
                logger.debug("Code exchange rejected: unknown or expired code for client_id=%s", client_id)
            raise InvalidGrant()

        granted = record.claims
        if granted.client_id != client.client_id or granted.redirect_uri != redirect_uri:
            logger.debug("Code exchange rejected: client or redirect_uri mismatch for client_id=%s", client_id)
            raise InvalidGrant()
        if not verify_pkce(code_verifier, granted.code_challenge, granted.code_challenge_method):
            logger.debug("Code exchange rejected: PKCE verification failed for client_id=%s", client_id)
            raise InvalidGrant()

        # Client's allowed scopes may have shrunk since the code was issued
        scope = frozenset(granted.scope) & client.allowed_scopes
        if not scope:
            raise InvalidGrant()

        pair = self._issue(client, granted.user_id, scope, scope, record.grant_id)
        logger.info("Tokens issued: client_id=%s user=%s scope=%s", client.client_id, granted.user_id, pair.scope)
        return pair

    def refresh(
        self,
        refresh_token: str,
        requested_scope: str | Iterable[str] | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new access token and a rotated refresh token.
        The requested scope may narrow the access token, never widen it.
        """
        claims = self._verify(refresh_token).claims
        if not isinstance(claims, RefreshTokenClaims):
            raise InvalidGrant()
        if client_id is not None and client_id != claims.client_id:
            raise InvalidGrant()
        client = self.registry.resolve(claims.client_id)
        if client is None:
            raise InvalidGrant()
        if not self.registry.authenticate(client, client_secret):
            raise InvalidClient()

        original = frozenset(claims.scope)
        requested = _scope_set(requested_scope)
        if requested and not requested <= original:
            raise InvalidScope()

        if not self.ledger.redeem(claims.jti):
            if self.ledger.is_known(claims.jti):
                logger.warning("Refresh token reuse: client_id=%s user=%s", claims.client_id, claims.user_id)
                self.ledger.revoke_grant(claims.grant_id)
            raise InvalidGrant()

        refresh_scope = original & client.allowed_scopes
        access_scope = (requested or original) & refresh_scope
        if not access_scope:
            raise InvalidGrant()
        pair = self._issue(client, claims.user_id, access_scope, refresh_scope, claims.grant_id)
        logger.info("refresh_token grant: client_id=%s user=%s (refresh token rotated)", client.client_id, claims.user_id)
        return pair

    # --- resource side ---

    def introspect(self, access_token: str, required_scope: str | None = None) -> DecodedToken:
        """Validate an access token for a resource request. Read-only."""
        try:
            decoded = self._verify(access_token)
        except InvalidGrant:
            raise InvalidToken() from None
        if not isinstance(decoded.claims, AccessTokenClaims):
            raise InvalidToken()
        if required_scope and required_scope not in decoded.claims.scope:
            raise InsufficientScope(f"Scope '{required_scope}' required")
        return decoded

    def revoke(self, token: str, client_id: str | None = None, client_secret: str | None = None) -> None:
        """
        RFC 7009. Revoking a refresh token revokes its whole grant family. Access tokens are
        stateless and simply expire. Unknown or invalid tokens are ignored.
        """
        try:
            claims = self._verify(token).claims
        except InvalidGrant:
            return
        if client_id is not None and client_id != claims.client_id:
            return
        client = self.registry.resolve(claims.client_id)
        if client is not None and not self.registry.authenticate(client, client_secret):
            raise InvalidClient()
        if isinstance(claims, RefreshTokenClaims):
            self.ledger.revoke_grant(claims.grant_id)

    # --- internals ---

    def _verify(self, token: str) -> DecodedToken:
        """Decode with the key named by the token's kid. Every failure becomes InvalidGrant."""
        if not token:
            raise InvalidGrant()
        try:
            key = self.keys.get(self.codec.peek_key_id(token))
            return self.codec.decode(token, key)
        except TokenError as e:
            logger.debug("Token rejected (%s): %s", e.kind, e)
            raise InvalidGrant() from None

    def _issue(
        self,
        client: RegisteredClient,
        user_id: str | None,
        access_scope: frozenset[str],
        refresh_scope: frozenset[str],
        grant_id: str,
    ) -> TokenPair:
        key = self.keys.get(client.signing_key_id)
        if key is None:
            raise SigningError(f"client {client.client_id} is pinned to unknown key {client.signing_key_id}")
        access = AccessTokenClaims(
            client_id=client.client_id,
            scope=tuple(sorted(access_scope)),
            grant_id=grant_id,
            user_id=user_id,
        )
        refresh = RefreshTokenClaims(
            client_id=client.client_id,
            scope=tuple(sorted(refresh_scope)),
            grant_id=grant_id,
            user_id=user_id,
        )
        access_token = self.codec.encode(access, key, self.access_ttl)
        refresh_token = self.codec.encode(refresh, key, self.refresh_ttl)
        if not self.ledger.record(refresh, datetime.now(timezone.utc) + timedelta(seconds=self.refresh_ttl)):
            # Family was revoked while this request was in flight (replayed code)
            logger.warning("Grant revoked during issuance: client_id=%s user=%s", client.client_id, user_id)
            raise InvalidGrant()
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl,
            scope=format_scope(access_scope),
        )
