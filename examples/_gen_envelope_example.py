from __future__ import annotations

import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "sdk-python"))

from salmon_send.envelope import sign_envelope  # noqa: E402
from salmon_send.keys import generate_private_key, magic_public_key  # noqa: E402

EXAMPLES = REPO_ROOT / "examples"

ATOM_PATH = EXAMPLES / "reply.atom.xml"
ENVELOPE_PATH = EXAMPLES / "reply.envelope.xml"
TAMPERED_PATH = EXAMPLES / "reply.envelope.tampered.xml"
KEYS_EXAMPLE_PATH = REPO_ROOT / "salmon_keys.example.json"


def main() -> None:
    # Fresh signer; only the public half is written out
    key = generate_private_key()
    key_id = "demo_signer_v1"

    env = sign_envelope(ATOM_PATH.read_bytes(), key, key_id=key_id)
    ENVELOPE_PATH.write_text(env.to_document() + "\n", encoding="utf-8")

    # Same signature over a different payload, so verification fails deterministically
    other = sign_envelope(b"<entry xmlns='http://www.w3.org/2005/Atom'/>", key, key_id=key_id)
    tampered = env.model_copy(update={"data": other.data})
    TAMPERED_PATH.write_text(tampered.to_document() + "\n", encoding="utf-8")

    KEYS_EXAMPLE_PATH.write_text(
        json.dumps({"trusted_keys": {key_id: str(magic_public_key(key))}}, indent=2),
        encoding="utf-8",
    )

    print("✅ Wrote:")
    for p in (KEYS_EXAMPLE_PATH, ENVELOPE_PATH, TAMPERED_PATH):
        print(f" - {p.relative_to(REPO_ROOT)}")
    print()
    print("Next:")
    print("  SALMON_KEYS_PATH=salmon_keys.example.json salmon-cli verify examples/reply.envelope.xml")
    print("  SALMON_KEYS_PATH=salmon_keys.example.json salmon-cli verify examples/reply.envelope.tampered.xml")


if __name__ == "__main__":
    main()
