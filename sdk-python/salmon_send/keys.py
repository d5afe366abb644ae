from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Set, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import KeyLoadError, KeyRingError
from .magicsig import MAGIC_KEY_PREFIX, MagicPublicKey

log = logging.getLogger("salmon_send.keys")

DEFAULT_KEY_BITS = 2048
PUBLIC_EXPONENT = 65537

DEFAULT_KEYRING_FILE = "salmon_keys.json"


def load_private_key(pem: Union[bytes, str]) -> rsa.RSAPrivateKey:
    """
    Load an unencrypted PEM private key (PKCS#1 or PKCS#8).

    Only RSA keys are accepted; magic envelopes are always RSA-SHA256.
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError("Cannot read key", details={"reason": str(e)}) from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(
            "Cannot read key: expected an RSA private key",
            details={"key_type": type(key).__name__},
        )
    return key


def generate_private_key(bits: int = DEFAULT_KEY_BITS) -> rsa.RSAPrivateKey:
    if bits < 1024:
        raise KeyLoadError(f"RSA key size too small: {bits} bits (min 1024)")
    log.debug("Generating %d-bit RSA key", bits)
    return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bits)


def private_key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    # Traditional "BEGIN RSA PRIVATE KEY" form, as written by OpenSSL tooling
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def magic_public_key(key: rsa.RSAPrivateKey) -> MagicPublicKey:
    return MagicPublicKey.from_crypto_key(key.public_key())


def parse_public_key(value: str) -> MagicPublicKey:
    """
    Parse a public key string.

    Supported formats:
      - magic key: ``RSA.<n>.<e>`` (optionally ``data:application/magic-public-key,`` prefixed)
      - PEM public key (-----BEGIN PUBLIC KEY----- / -----BEGIN RSA PUBLIC KEY-----)
    """
    v = value.strip()
    if not v:
        raise KeyLoadError("Public key must be a non-empty string")

    if v.startswith("-----BEGIN"):
        try:
            pub = serialization.load_pem_public_key(v.encode("utf-8"))
        except ValueError as e:
            raise KeyLoadError("Invalid PEM public key") from e
        if not isinstance(pub, rsa.RSAPublicKey):
            raise KeyLoadError("PEM public key is not an RSA key")
        return MagicPublicKey.from_crypto_key(pub)

    if v.startswith("RSA.") or v.startswith(MAGIC_KEY_PREFIX):
        return MagicPublicKey.parse(v)

    raise KeyLoadError("Unrecognized public key format (expected magic key or PEM)")


KeyStatus = Literal["ok", "missing", "revoked"]


@dataclass(frozen=True)
class TrustedKeyRing:
    """
    Trusted signer registry used to verify incoming envelopes.

    - keys maps key_id -> MagicPublicKey
    - revoked_keys contains key_ids that must be treated as untrusted
    """

    keys: Dict[str, MagicPublicKey]
    revoked_keys: Set[str]

    def get(self, key_id: Optional[str]) -> Optional[MagicPublicKey]:
        """Return the key ONLY if it is present and not revoked."""
        if self.key_status(key_id) != "ok":
            return None
        return self.keys[key_id.strip()]  # type: ignore[union-attr]

    def key_status(self, key_id: Optional[str]) -> KeyStatus:
        if not isinstance(key_id, str) or not key_id.strip():
            return "missing"

        kid = key_id.strip()
        if kid in self.revoked_keys:
            return "revoked"
        if kid not in self.keys:
            return "missing"
        return "ok"

    def active_keys(self) -> Dict[str, MagicPublicKey]:
        return {kid: k for kid, k in self.keys.items() if kid not in self.revoked_keys}

    @staticmethod
    def _parse_keys_obj(obj: Dict[str, Any]) -> Dict[str, MagicPublicKey]:
        out: Dict[str, MagicPublicKey] = {}
        for key_id, v in obj.items():
            if not isinstance(key_id, str) or not key_id.strip():
                raise KeyRingError("key_id must be a non-empty string")
            kid = key_id.strip()

            if not isinstance(v, str):
                raise KeyRingError(f"Public key for '{kid}' must be a string")
            try:
                out[kid] = parse_public_key(v)
            except KeyLoadError as e:
                raise KeyRingError(f"Public key for '{kid}': {e.message}") from e
        return out

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "TrustedKeyRing":
        """
        Build a keyring from a dict.

        Recommended:
          {
            "trusted_keys": {"alice_v1": "RSA.mVgY...", "bob": "-----BEGIN PUBLIC KEY-----..."},
            "revoked_keys": ["alice_v0"]
          }

        Minimal legacy:
          {"alice_v1": "RSA.mVgY..."}
        """
        if not isinstance(d, dict):
            raise KeyRingError("Keyring JSON must be an object")

        if isinstance(d.get("trusted_keys"), dict):
            keys = TrustedKeyRing._parse_keys_obj(d["trusted_keys"])

            revoked: Set[str] = set()
            rk = d.get("revoked_keys")
            if rk is not None:
                if not isinstance(rk, list) or not all(isinstance(x, str) for x in rk):
                    raise KeyRingError("revoked_keys must be a list of strings")
                revoked = {x.strip() for x in rk if x.strip()}

            return TrustedKeyRing(keys=keys, revoked_keys=revoked)

        filtered = {k: v for k, v in d.items() if k not in {"revoked_keys", "trusted_keys"}}
        return TrustedKeyRing(keys=TrustedKeyRing._parse_keys_obj(filtered), revoked_keys=set())

    @staticmethod
    def from_json_file(path: Path) -> "TrustedKeyRing":
        if not path.exists():
            raise KeyRingError(f"Keyring file not found: {path}")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise KeyRingError(f"Invalid JSON in keyring file: {path}") from e

        return TrustedKeyRing.from_dict(data)

    @staticmethod
    def empty() -> "TrustedKeyRing":
        return TrustedKeyRing(keys={}, revoked_keys=set())

    @staticmethod
    def load(path: Optional[Path]) -> "TrustedKeyRing":
        """
        Loader used by the CLI and endpoint:
          - explicit path (from SALMON_KEYS_PATH or --keys) if given
          - else ./salmon_keys.json in the current working directory
          - else an empty keyring
        """
        if path is not None:
            return TrustedKeyRing.from_json_file(path)

        default = Path(DEFAULT_KEYRING_FILE)
        if default.exists():
            return TrustedKeyRing.from_json_file(default)

        return TrustedKeyRing.empty()
