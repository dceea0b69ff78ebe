"""
Token introspection endpoint (POST /introspect). RFC 7662.
Callers must be registered clients; confidential clients must authenticate.
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request

from grant_server.client_auth import client_credentials
from grant_server.context import get_service
from grant_server.errors import OAuthError
from grant_server.service import AuthorizationService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/introspect")
def introspect(
    request: Request,
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    service: AuthorizationService = Depends(get_service),
):
    """Return {"active": true, ...claims} for a valid access token, else {"active": false}."""
    if not token.strip():
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": "token is required"},
        )
    try:
        service.authenticate_client(*client_credentials(request, client_id, client_secret))
    except OAuthError as e:
        raise e.to_http()

    # Only access tokens are introspectable; refresh tokens report inactive
    if (token_type_hint or "access_token").strip().lower() != "access_token":
        return {"active": False}
    try:
        decoded = service.introspect(token.strip())
    except OAuthError:
        return {"active": False}

    claims = decoded.claims
    body = {
        "active": True,
        "token_type": "access_token",
        "scope": " ".join(claims.scope),
        "client_id": claims.client_id,
        "exp": decoded.expires_at,
        "iat": decoded.issued_at,
        "iss": service.codec.issuer,
        "aud": claims.client_id,
        "jti": claims.jti,
    }
    if claims.user_id is not None:
        body["sub"] = claims.user_id
    return body
