"""
Seed OAuth clients from environment. No hardcoded credentials.
Optional: OAUTH_CLIENT_ID + OAUTH_REDIRECT_URIS (comma-separated) + OAUTH_CLIENT_SCOPES
(space-separated), and OAUTH_SEED_CLIENT_SECRET for a confidential client.
"""
import logging
import os

from grant_server.registry import ClientRegistry

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "test-client"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8000/callback"
DEFAULT_SCOPES = ["api.read", "api.write"]


def seed_from_env(registry: ClientRegistry) -> None:
    """Register the client described by the environment, plus the default dev client."""
    client_id = os.environ.get("OAUTH_CLIENT_ID")
    redirect_uris_str = os.environ.get("OAUTH_REDIRECT_URIS") or os.environ.get("OAUTH_REDIRECT_URI")
    scopes_str = os.environ.get("OAUTH_CLIENT_SCOPES", " ".join(DEFAULT_SCOPES))
    client_secret = os.environ.get("OAUTH_SEED_CLIENT_SECRET")
    if client_id and redirect_uris_str:
        uris = [u.strip() for u in redirect_uris_str.split(",") if u.strip()]
        scopes = scopes_str.split()
        if uris and scopes:
            registry.register(client_id, uris, scopes, client_secret=client_secret or None)
        else:
            logger.warning("Skipping seed client %s: no redirect URIs or scopes", client_id)

    # Development fallback so the quick start works against a fresh database
    registry.register(DEFAULT_CLIENT_ID, [DEFAULT_REDIRECT_URI], DEFAULT_SCOPES)
