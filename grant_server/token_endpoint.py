"""
Token endpoint (POST /token). authorization_code and refresh_token grants.
"""
import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse

from grant_server.client_auth import client_credentials
from grant_server.context import get_service
from grant_server.errors import InvalidRequest, OAuthError, UnsupportedGrantType
from grant_server.service import AuthorizationService, TokenPair

logger = logging.getLogger(__name__)
router = APIRouter()

# RFC 6749 §5.1: token responses must not be cached
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _grant(
    service: AuthorizationService,
    grant_type: str,
    *,
    code: str | None,
    redirect_uri: str | None,
    client_id: str | None,
    client_secret: str | None,
    code_verifier: str | None,
    refresh_token: str | None,
    scope: str | None,
) -> TokenPair:
    if grant_type == "authorization_code":
        if not code or not redirect_uri or not code_verifier or not client_id:
            raise InvalidRequest("code, redirect_uri, client_id and code_verifier are required")
        return service.exchange_code(code, client_id, redirect_uri, code_verifier, client_secret)
    if grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidRequest("refresh_token is required")
        return service.refresh(refresh_token, scope, client_id, client_secret)
    raise UnsupportedGrantType()


@router.post("/token")
def token(
    request: Request,
    grant_type: str = Form(...),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    code_verifier: str | None = Form(None),
    refresh_token: str | None = Form(None),
    scope: str | None = Form(None),
    service: AuthorizationService = Depends(get_service),
):
    """Exchange a code or refresh token for a new access token and rotated refresh token."""
    client_id, client_secret = client_credentials(request, client_id, client_secret)
    try:
        pair = _grant(
            service,
            grant_type,
            code=code,
            redirect_uri=redirect_uri,
            client_id=client_id,
            client_secret=client_secret,
            code_verifier=code_verifier,
            refresh_token=refresh_token,
            scope=scope,
        )
    except OAuthError as e:
        logger.info("Token request rejected: grant_type=%s client_id=%s error=%s", grant_type, client_id, e.error)
        raise e.to_http()
    return JSONResponse(pair.to_response(), headers=_NO_STORE)
