"""
Authorization endpoint (GET /authorize). RFC 6749 §4.1.1 with PKCE.
The user is authenticated upstream; their id arrives in the configured trusted header.
"""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from grant_server.config import USER_HEADER
from grant_server.context import get_service
from grant_server.errors import InvalidClient, InvalidRedirectUri, OAuthError
from grant_server.service import AuthorizationService

logger = logging.getLogger(__name__)
router = APIRouter()


def _redirect(redirect_uri: str, params: dict, state: str | None) -> RedirectResponse:
    if state is not None:
        params["state"] = state
    separator = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(url=f"{redirect_uri}{separator}{urlencode(params)}", status_code=302)


def _redirect_error(redirect_uri: str, error: str, error_description: str, state: str | None) -> RedirectResponse:
    return _redirect(redirect_uri, {"error": error, "error_description": error_description}, state)


@router.get("/authorize")
def authorize(
    request: Request,
    response_type: str | None = None,
    client_id: str | None = None,
    redirect_uri: str | None = None,
    scope: str | None = None,
    state: str | None = None,
    code_challenge: str | None = None,
    code_challenge_method: str | None = None,
    service: AuthorizationService = Depends(get_service),
):
    """
    Validate the request and redirect back with code and state.
    Unknown client or unregistered redirect_uri: 400 here, never a redirect.
    """
    try:
        service.check_redirect(client_id, redirect_uri)
    except (InvalidClient, InvalidRedirectUri) as e:
        logger.info("Authorization request rejected before redirect: client_id=%s (%s)", client_id, e.error)
        raise HTTPException(status_code=400, detail=e.to_dict())

    if response_type != "code":
        return _redirect_error(redirect_uri, "unsupported_response_type", "response_type must be 'code'", state)

    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        return _redirect_error(redirect_uri, "access_denied", "User is not authenticated", state)

    try:
        code = service.authorize(
            client_id,
            redirect_uri,
            scope,
            user_id,
            code_challenge,
            code_challenge_method,
        )
    except OAuthError as e:
        return _redirect_error(redirect_uri, e.error, e.description, state)
    # state is opaque and echoed back unmodified
    return _redirect(redirect_uri, {"code": code}, state)
