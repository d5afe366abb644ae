"""
Magic Signatures primitives.

Everything here works on already-encoded strings / raw bytes; the envelope
model in ``salmon_send.envelope`` composes these into a full magic envelope.

Signature base string (SBS):

    data + "." + b64url(data_type) + "." + b64url(encoding) + "." + b64url(alg)

The SBS is signed with RSASSA-PKCS1-v1_5 / SHA-256 and the signature is
transported base64url encoded.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import KeyLoadError


ENCODING = "base64url"
ALGORITHM = "RSA-SHA256"

MAGIC_KEY_PREFIX = "data:application/magic-public-key,"

_WS_RE = re.compile(r"\s+")


def b64url_encode(raw: bytes) -> str:
    """URL-safe base64 with ``=`` padding kept."""
    return base64.urlsafe_b64encode(raw).decode("ascii")


def b64url_decode(value: str) -> bytes:
    """
    Decode base64url text.

    Whitespace is ignored and missing padding is tolerated. Raises ValueError
    on characters outside the alphabet.
    """
    raw = _WS_RE.sub("", value)
    raw = raw.replace("-", "+").replace("_", "/")
    pad = "=" * ((4 - len(raw) % 4) % 4)
    try:
        return base64.b64decode(raw + pad, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64url value: {e}") from e


def _int_to_bytes(i: int) -> bytes:
    return i.to_bytes(max(1, (i.bit_length() + 7) // 8), "big")


def signature_base_string(data: str, data_type: str, encoding: str = ENCODING, alg: str = ALGORITHM) -> bytes:
    """Build the SBS. ``data`` is the already base64url-encoded payload."""
    parts = [
        _WS_RE.sub("", data),
        b64url_encode(data_type.encode("utf-8")),
        b64url_encode(encoding.encode("utf-8")),
        b64url_encode(alg.encode("utf-8")),
    ]
    return ".".join(parts).encode("ascii")


def sign_rsa_sha256(message: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())


def verify_rsa_sha256(message: bytes, signature: bytes, public_key: rsa.RSAPublicKey) -> bool:
    try:
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except InvalidSignature:
        return False
    return True


@dataclass(frozen=True)
class MagicPublicKey:
    """
    RSA public key in "magic key" form: ``RSA.<modulus>.<exponent>``,
    both components big-endian and base64url encoded.
    """

    n: int
    e: int

    def to_string(self) -> str:
        return "RSA." + b64url_encode(_int_to_bytes(self.n)) + "." + b64url_encode(_int_to_bytes(self.e))

    def __str__(self) -> str:
        return self.to_string()

    def key_hash(self) -> str:
        """base64url(sha256(magic key text)), used as the default key_id."""
        digest = hashlib.sha256(self.to_string().encode("ascii")).digest()
        return b64url_encode(digest)

    def to_crypto_key(self) -> rsa.RSAPublicKey:
        return rsa.RSAPublicNumbers(self.e, self.n).public_key()

    @staticmethod
    def from_crypto_key(key: rsa.RSAPublicKey) -> "MagicPublicKey":
        numbers = key.public_numbers()
        return MagicPublicKey(n=numbers.n, e=numbers.e)

    @staticmethod
    def parse(value: str) -> "MagicPublicKey":
        """
        Parse ``RSA.<n>.<e>`` (optionally prefixed with
        ``data:application/magic-public-key,``).
        """
        v = value.strip()
        if v.startswith(MAGIC_KEY_PREFIX):
            v = v[len(MAGIC_KEY_PREFIX):]

        parts = v.split(".")
        if len(parts) != 3 or parts[0] != "RSA":
            raise KeyLoadError("Magic public key must look like 'RSA.<modulus>.<exponent>'")

        try:
            n = int.from_bytes(b64url_decode(parts[1]), "big")
            e = int.from_bytes(b64url_decode(parts[2]), "big")
        except ValueError as ex:
            raise KeyLoadError("Invalid base64url in magic public key") from ex

        key = MagicPublicKey(n=n, e=e)
        try:
            key.to_crypto_key()
        except ValueError as ex:
            raise KeyLoadError(f"Invalid RSA public key: {ex}") from ex
        return key
