"""
Protocol-facing error taxonomy (RFC 6749 §5.2 error codes).
Descriptions are deliberately coarse: they never say which check failed.
"""
from fastapi import HTTPException


class OAuthError(Exception):
    """Client did something wrong. Carries the wire error code and HTTP status."""

    error = "invalid_request"
    status_code = 400
    description = "Invalid request"

    def __init__(self, description: str | None = None):
        if description is not None:
            self.description = description
        super().__init__(self.description)

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}

    def to_http(self) -> HTTPException:
        headers = {"Cache-Control": "no-store"}
        if self.status_code == 401:
            headers["WWW-Authenticate"] = "Bearer" if isinstance(self, InvalidToken) else "Basic"
        return HTTPException(status_code=self.status_code, detail=self.to_dict(), headers=headers)


class InvalidRequest(OAuthError):
    pass


class InvalidClient(OAuthError):
    error = "invalid_client"
    status_code = 401
    description = "Client authentication failed"


class InvalidRedirectUri(OAuthError):
    # No dedicated code in RFC 6749; must never be answered with a redirect
    error = "invalid_request"
    description = "redirect_uri not registered for this client"


class InvalidScope(OAuthError):
    error = "invalid_scope"
    description = "Requested scope is invalid or exceeds the granted scope"


class InvalidGrant(OAuthError):
    error = "invalid_grant"
    description = "Invalid authorization grant"


class UnsupportedGrantType(OAuthError):
    error = "unsupported_grant_type"
    description = "Only authorization_code and refresh_token are supported"


class InvalidToken(OAuthError):
    error = "invalid_token"
    status_code = 401
    description = "Invalid token"


class InsufficientScope(OAuthError):
    error = "insufficient_scope"
    status_code = 403
    description = "Token does not carry the required scope"
