"""
PKCE (RFC 7636) proof verification. S256 always; plain only when enabled in config.
"""
import hashlib
import hmac
import re
from base64 import urlsafe_b64encode

METHOD_PLAIN = "plain"
METHOD_S256 = "S256"

# RFC 7636 §4.1: 43-128 chars from the unreserved set
_VERIFIER_RE = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")
# BASE64URL of a SHA-256 digest, unpadded
_S256_CHALLENGE_RE = re.compile(r"^[A-Za-z0-9_-]{43}$")


def valid_challenge(code_challenge: str | None, method: str) -> bool:
    """
    True iff some verifier can match code_challenge under method. A plain challenge
    is the verifier itself, so it must satisfy the verifier syntax.
    """
    if not code_challenge:
        return False
    if method == METHOD_S256:
        return _S256_CHALLENGE_RE.fullmatch(code_challenge) is not None
    if method == METHOD_PLAIN:
        return _VERIFIER_RE.fullmatch(code_challenge) is not None
    return False


def s256_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(ascii(verifier))) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def supported_methods(allow_plain: bool) -> tuple[str, ...]:
    return (METHOD_S256, METHOD_PLAIN) if allow_plain else (METHOD_S256,)


def verify_pkce(code_verifier: str, code_challenge: str, method: str) -> bool:
    """True iff the verifier matches the stored challenge under method. Constant-time compare."""
    if not code_verifier or not code_challenge or not _VERIFIER_RE.fullmatch(code_verifier):
        return False
    if method == METHOD_S256:
        computed = s256_challenge(code_verifier)
    elif method == METHOD_PLAIN:
        computed = code_verifier
    else:
        return False
    return hmac.compare_digest(computed.encode("utf-8"), code_challenge.encode("utf-8"))
