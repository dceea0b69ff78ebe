"""
Client credentials from a token-endpoint request (RFC 6749 §2.3.1):
Authorization: Basic base64(client_id:client_secret), or client_id + client_secret in the form.
"""
import base64
import binascii
from urllib.parse import unquote_plus

from fastapi import Request


def _parse_basic(header_value: str) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    # Both parts are form-urlencoded before base64 per §2.3.1
    return unquote_plus(client_id), unquote_plus(client_secret)


def client_credentials(
    request: Request,
    client_id_form: str | None,
    client_secret_form: str | None,
) -> tuple[str | None, str | None]:
    """(client_id, client_secret) from the form, falling back to HTTP Basic."""
    if client_id_form and client_secret_form is not None:
        return client_id_form.strip(), client_secret_form
    basic = _parse_basic(request.headers.get("Authorization", ""))
    if basic:
        return basic
    if client_id_form:
        return client_id_form.strip(), client_secret_form
    return None, None
