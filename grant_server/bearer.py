"""
Bearer token checks for resource routes. Tokens are validated in-process through the
authorization service; no network round trip.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from grant_server.context import get_service
from grant_server.errors import OAuthError
from grant_server.service import AuthorizationService
from grant_server.tokens import DecodedToken

security = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> str:
    """Extract Bearer token from Authorization header. Raises 401 if missing."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "invalid_request", "error_description": "Bearer token required"},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def require_scope(required: str | None = None):
    """Dependency factory: a valid access token, carrying `required` when given."""

    def _check(
        token: Annotated[str, Depends(get_bearer_token)],
        service: Annotated[AuthorizationService, Depends(get_service)],
    ) -> DecodedToken:
        try:
            return service.introspect(token, required)
        except OAuthError as e:
            raise e.to_http()

    return Depends(_check)
