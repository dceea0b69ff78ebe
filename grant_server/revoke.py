"""
Token revocation endpoint (POST /revoke). RFC 7009.
Refresh tokens revoke their whole grant family; access tokens are stateless and just expire.
"""
import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request

from grant_server.client_auth import client_credentials
from grant_server.context import get_service
from grant_server.errors import OAuthError
from grant_server.service import AuthorizationService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/revoke")
def revoke(
    request: Request,
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    service: AuthorizationService = Depends(get_service),
):
    """
    Always 200 for a well-formed request, even for unknown tokens, so the response
    says nothing about the token. Confidential clients must authenticate.
    """
    if not token.strip():
        raise HTTPException(status_code=400, detail={"error": "invalid_request", "error_description": "token is required"})
    cid, csecret = client_credentials(request, client_id, client_secret)
    try:
        service.revoke(token.strip(), cid, csecret)
    except OAuthError as e:
        raise e.to_http()
    return {}
