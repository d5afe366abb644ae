"""
Magic envelope model.

An envelope carries a base64url-encoded document together with its MIME
type, the encoding and algorithm identifiers and one or more signatures over
the signature base string (see ``salmon_send.magicsig``).

Two serializations are supported:

XML (``application/magic-envelope+xml``)::

    <me:env xmlns:me="http://salmon-protocol.org/ns/magic-env">
      <me:data type="application/atom+xml">...</me:data>
      <me:encoding>base64url</me:encoding>
      <me:alg>RSA-SHA256</me:alg>
      <me:sig key_id="...">...</me:sig>
    </me:env>

JSON (``application/magic-envelope+json``)::

    {"data": "...", "data_type": "...", "encoding": "base64url",
     "alg": "RSA-SHA256", "sigs": [{"value": "...", "key_id": "..."}]}
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from importlib import resources
from typing import Any, Dict, List, Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate as js_validate
from pydantic import BaseModel, ValidationError, model_validator

from .errors import EnvelopeError, KeyLoadError, SigningError
from .keys import TrustedKeyRing, load_private_key
from .magicsig import (
    ALGORITHM,
    ENCODING,
    MagicPublicKey,
    b64url_decode,
    b64url_encode,
    sign_rsa_sha256,
    signature_base_string,
    verify_rsa_sha256,
)

log = logging.getLogger("salmon_send.envelope")

MAGIC_ENV_NS = "http://salmon-protocol.org/ns/magic-env"
XML_DECLARATION = "<?xml version='1.0' encoding='UTF-8'?>"

DEFAULT_DATA_TYPE = "application/atom+xml"
XML_CONTENT_TYPE = "application/magic-envelope+xml"
JSON_CONTENT_TYPE = "application/magic-envelope+json"

ET.register_namespace("me", MAGIC_ENV_NS)


def _q(tag: str) -> str:
    return f"{{{MAGIC_ENV_NS}}}{tag}"


def load_packaged_schema() -> Dict[str, Any]:
    schema_text = (
        resources.files("salmon_send")
        .joinpath("schemas/magic_envelope.schema.json")
        .read_text(encoding="utf-8")
    )
    return json.loads(schema_text)


class EnvelopeSignature(BaseModel):
    value: str
    key_id: Optional[str] = None


class MagicEnvelope(BaseModel):
    data: str
    data_type: str = DEFAULT_DATA_TYPE
    encoding: str = ENCODING
    alg: str = ALGORITHM
    sigs: List[EnvelopeSignature]

    @model_validator(mode="after")
    def check_envelope(self) -> "MagicEnvelope":
        if self.encoding != ENCODING:
            raise ValueError(f"Unsupported encoding '{self.encoding}' (expected '{ENCODING}')")
        if self.alg != ALGORITHM:
            raise ValueError(f"Unsupported algorithm '{self.alg}' (expected '{ALGORITHM}')")
        if not self.data_type.strip():
            raise ValueError("data_type must be a non-empty string")
        if not self.sigs:
            raise ValueError("Envelope must carry at least one signature")

        b64url_decode(self.data)
        for sig in self.sigs:
            b64url_decode(sig.value)
        return self

    # ---- content ----

    def payload(self) -> bytes:
        """The original document bytes."""
        return b64url_decode(self.data)

    def signature_base_string(self) -> bytes:
        return signature_base_string(self.data, self.data_type, self.encoding, self.alg)

    # ---- verification ----

    def verify(self, public_key: MagicPublicKey) -> bool:
        """True if any signature on the envelope verifies with ``public_key``."""
        sbs = self.signature_base_string()
        crypto_key = public_key.to_crypto_key()
        return any(verify_rsa_sha256(sbs, b64url_decode(s.value), crypto_key) for s in self.sigs)

    def verify_with_keyring(self, keyring: TrustedKeyRing) -> Optional[str]:
        """
        Return the key_id of the first signature that verifies against an
        active key in ``keyring``, or None.

        Signatures without a key_id are tried against every active key.
        """
        sbs = self.signature_base_string()
        for sig in self.sigs:
            sig_bytes = b64url_decode(sig.value)
            if sig.key_id:
                candidates = {sig.key_id: keyring.get(sig.key_id)}
            else:
                candidates = dict(keyring.active_keys())

            for kid, key in candidates.items():
                if key is None:
                    log.debug("No active key for key_id=%s (status=%s)", kid, keyring.key_status(kid))
                    continue
                if verify_rsa_sha256(sbs, sig_bytes, key.to_crypto_key()):
                    return kid
        return None

    # ---- XML ----

    def to_xml(self) -> str:
        env = ET.Element(_q("env"))
        data_el = ET.SubElement(env, _q("data"), {"type": self.data_type})
        data_el.text = self.data
        ET.SubElement(env, _q("encoding")).text = self.encoding
        ET.SubElement(env, _q("alg")).text = self.alg
        for sig in self.sigs:
            attrs = {"key_id": sig.key_id} if sig.key_id else {}
            ET.SubElement(env, _q("sig"), attrs).text = sig.value
        return ET.tostring(env, encoding="unicode")

    def to_document(self) -> str:
        """XML declaration + envelope, ready to POST."""
        return XML_DECLARATION + "\n" + self.to_xml()

    @staticmethod
    def from_xml(text: Union[str, bytes]) -> "MagicEnvelope":
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise EnvelopeError(f"Malformed envelope XML: {e}") from e

        env = root
        if root.tag not in (_q("env"), _q("provenance")):
            # e.g. an Atom entry carrying <me:provenance>
            env = root.find(f".//{_q('env')}")
            if env is None:
                env = root.find(f".//{_q('provenance')}")
        if env is None:
            raise EnvelopeError(f"No magic envelope element found (root is '{root.tag}')")

        data_el = env.find(_q("data"))
        if data_el is None or not (data_el.text or "").strip():
            raise EnvelopeError("Envelope has no me:data element")

        fields: Dict[str, Any] = {
            "data": "".join((data_el.text or "").split()),
            "data_type": data_el.get("type") or DEFAULT_DATA_TYPE,
            "encoding": (env.findtext(_q("encoding")) or "").strip(),
            "alg": (env.findtext(_q("alg")) or "").strip(),
            "sigs": [
                {"value": "".join((s.text or "").split()), "key_id": s.get("key_id")}
                for s in env.findall(_q("sig"))
            ],
        }
        return MagicEnvelope._build(fields)

    # ---- JSON ----

    def to_dict(self) -> Dict[str, Any]:
        d = self.model_dump()
        d["sigs"] = [
            {"value": s.value, "key_id": s.key_id} if s.key_id else {"value": s.value}
            for s in self.sigs
        ]
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @staticmethod
    def from_json(text: Union[str, bytes]) -> "MagicEnvelope":
        try:
            obj = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise EnvelopeError(f"Malformed envelope JSON: {e}") from e

        try:
            js_validate(instance=obj, schema=load_packaged_schema())
        except SchemaValidationError as e:
            raise EnvelopeError(f"Envelope JSON does not match schema: {e.message}") from e

        return MagicEnvelope._build(obj)

    @staticmethod
    def parse(text: Union[str, bytes]) -> "MagicEnvelope":
        """Detect the serialization (JSON or XML) from the first non-blank character."""
        head = text.lstrip()[:1]
        if head in ("{", b"{"):
            return MagicEnvelope.from_json(text)
        return MagicEnvelope.from_xml(text)

    @staticmethod
    def _build(fields: Dict[str, Any]) -> "MagicEnvelope":
        try:
            return MagicEnvelope(**fields)
        except ValidationError as e:
            raise EnvelopeError(
                "Invalid magic envelope",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e


def sign_envelope(
    payload: bytes,
    private_key: Union[bytes, str, rsa.RSAPrivateKey],
    *,
    data_type: str = DEFAULT_DATA_TYPE,
    key_id: Optional[str] = None,
) -> MagicEnvelope:
    """
    Wrap ``payload`` in a magic envelope signed with ``private_key``.

    ``private_key`` may be PEM bytes/text or a loaded RSA key. When
    ``key_id`` is omitted the key hash of the signer's magic public key is
    used.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        key = private_key
    else:
        try:
            key = load_private_key(private_key)
        except KeyLoadError as e:
            raise SigningError(e.message, details=e.details) from e

    if not data_type.strip():
        raise SigningError("data_type must be a non-empty string")
    if not payload:
        raise SigningError("Payload is empty; an envelope must carry data")

    data = b64url_encode(payload)
    sbs = signature_base_string(data, data_type)
    sig = b64url_encode(sign_rsa_sha256(sbs, key))

    if key_id is None:
        key_id = MagicPublicKey.from_crypto_key(key.public_key()).key_hash()

    log.debug("Signed %d byte payload (data_type=%s key_id=%s)", len(payload), data_type, key_id)
    return MagicEnvelope(
        data=data,
        data_type=data_type,
        sigs=[EnvelopeSignature(value=sig, key_id=key_id or None)],
    )
