"""
RSA signing keys for tokens: current key plus optional previous key for rotation.
Loaded from file or generated and persisted; no key material in code.
New tokens use the current key (or a client's pinned kid); JWKS publishes every key.
"""
import base64
import logging
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, generate_private_key

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
KID_CURRENT = "grant-server-key"
KID_PREVIOUS = "grant-server-key-prev"


@dataclass(frozen=True)
class SigningKey:
    """A private key and the kid it is published under."""

    kid: str
    private_key: RSAPrivateKey

    @property
    def public_key(self):
        return self.private_key.public_key()


def generate_signing_key(kid: str = KID_CURRENT) -> SigningKey:
    return SigningKey(kid, generate_private_key(public_exponent=65537, key_size=_KEY_BITS))


def _serialize_private(key: RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _load_pem(path: Path) -> RSAPrivateKey:
    key = serialization.load_pem_private_key(path.read_bytes(), password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError(f"{path} does not hold an RSA private key")
    return key


def load_or_create_signing_key(path: str | None, kid: str = KID_CURRENT) -> SigningKey:
    """
    Load RSA private key from path, or generate one and save it there.
    A file that exists but cannot be parsed is an error: silently replacing it
    would invalidate every outstanding token.
    """
    if not path:
        return generate_signing_key(kid)
    p = Path(path)
    if p.exists():
        return SigningKey(kid, _load_pem(p))
    key = generate_signing_key(kid)
    try:
        p.write_bytes(_serialize_private(key.private_key))
        logger.info("Generated and saved signing key to %s", path)
    except OSError as e:
        logger.warning("Could not save signing key to %s: %s", path, e)
    return key


def public_key_to_jwk(public_key, kid: str) -> dict:
    """Export an RSA public key as a JWK with the given kid."""
    numbers = public_key.public_numbers()

    def b64(value: int) -> str:
        raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    return {"kty": "RSA", "kid": kid, "alg": "RS256", "use": "sig", "n": b64(numbers.n), "e": b64(numbers.e)}


class KeyRing:
    """Signing-key source. Built once at startup and shared by reference."""

    def __init__(self, current: SigningKey, others: list[SigningKey] | None = None):
        self._current = current
        self._by_kid: dict[str, SigningKey] = {current.kid: current}
        for key in others or []:
            self._by_kid.setdefault(key.kid, key)

    @classmethod
    def from_files(cls, current_path: str | None, previous_path: str | None = None) -> "KeyRing":
        current = load_or_create_signing_key(current_path, KID_CURRENT)
        others = []
        if previous_path:
            p = Path(previous_path)
            if p.exists():
                others.append(SigningKey(KID_PREVIOUS, _load_pem(p)))
                logger.info("Loaded previous signing key (kid=%s) for rotation", KID_PREVIOUS)
            else:
                logger.warning("Previous signing key %s not found; rotation key skipped", previous_path)
        return cls(current, others)

    @property
    def current(self) -> SigningKey:
        return self._current

    def get(self, kid: str | None) -> SigningKey | None:
        """Key for kid, or None when unknown. A missing kid means the current key."""
        if kid is None:
            return self._current
        return self._by_kid.get(kid)

    def jwks(self) -> dict:
        return {"keys": [public_key_to_jwk(k.public_key, kid) for kid, k in self._by_kid.items()]}
