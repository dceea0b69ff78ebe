"""
Well-known endpoints: JWKS and OAuth authorization server metadata (RFC 8414).
"""
from fastapi import APIRouter, Depends

from grant_server.context import AppContext, get_context

router = APIRouter()


@router.get("/.well-known/jwks.json")
def jwks_json(ctx: AppContext = Depends(get_context)):
    """JSON Web Key Set for token signature verification."""
    return ctx.keys.jwks()


@router.get("/.well-known/oauth-authorization-server")
def authorization_server_metadata(ctx: AppContext = Depends(get_context)):
    issuer = ctx.codec.issuer
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/authorize",
        "token_endpoint": f"{issuer}/token",
        "introspection_endpoint": f"{issuer}/introspect",
        "revocation_endpoint": f"{issuer}/revoke",
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_basic", "client_secret_post"],
        "code_challenge_methods_supported": list(ctx.service.pkce_methods),
    }
