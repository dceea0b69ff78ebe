"""
Grant server configuration. All values come from the environment; no secrets in this file.
"""
import os

# Issuer URL (public identifier, goes into the iss claim)
ISSUER = os.environ.get("OAUTH_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# SQLite for development; any SQLAlchemy URL works
DATABASE_URL = os.environ.get("AUTH_DATABASE_URL", "sqlite:///./grant_server.db")

# Authorization code lifetime (seconds). Never longer than 10 minutes.
CODE_TTL_SECONDS = min(int(os.environ.get("OAUTH_CODE_TTL_SECONDS", "60")), 600)

# Access token lifetime (seconds)
ACCESS_TOKEN_EXPIRES = int(os.environ.get("OAUTH_ACCESS_TOKEN_EXPIRES", "3600"))

# Refresh token lifetime (seconds), default 30 days
REFRESH_TOKEN_EXPIRES = int(os.environ.get("OAUTH_REFRESH_TOKEN_EXPIRES", str(30 * 24 * 3600)))

# RSA private key PEM for signing tokens; generated and saved here when missing.
SIGNING_KEY_PATH = os.environ.get("OAUTH_SIGNING_KEY_PATH", ".grant_signing_key.pem")
# Optional previous key: still verifies tokens it signed, never signs new ones.
SIGNING_KEY_PREVIOUS_PATH = os.environ.get("OAUTH_SIGNING_KEY_PREVIOUS_PATH", "").strip() or None

# Authorization code backing: "sql" (shared across workers) or "memory" (single process)
CODE_STORE = os.environ.get("OAUTH_CODE_STORE", "sql").strip().lower()

# PKCE "plain" is allowed for clients that cannot hash; S256 is always accepted
ALLOW_PLAIN_PKCE = os.environ.get("OAUTH_ALLOW_PLAIN_PKCE", "true").strip().lower() in ("1", "true", "yes")

# Header set by the upstream authenticator carrying the logged-in user's id
USER_HEADER = os.environ.get("OAUTH_USER_HEADER", "X-Authenticated-User")

LOG_LEVEL = os.environ.get("OAUTH_LOG_LEVEL", "INFO").upper()
