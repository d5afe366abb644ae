from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import Settings, load_settings
from .delivery import deliver
from .envelope import DEFAULT_DATA_TYPE, JSON_CONTENT_TYPE, MagicEnvelope, sign_envelope
from .errors import EnvelopeError, KeyLoadError, KeyRingError, SigningError, TransportError
from .keys import (
    DEFAULT_KEY_BITS,
    TrustedKeyRing,
    generate_private_key,
    load_private_key,
    magic_public_key,
    parse_public_key,
    private_key_to_pem,
)
from .magicsig import MAGIC_KEY_PREFIX, MagicPublicKey

log = logging.getLogger("salmon_send.cli")

# Exit codes
EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FILE_ERROR = 2
EXIT_SIGNING_FAILED = 3
EXIT_TRANSPORT_ERROR = 4
EXIT_HTTP_STATUS = 5
EXIT_VERIFY_FAILED = 6


class _UsageParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with EXIT_USAGE instead of 2."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(EXIT_USAGE)


def _positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: '{value}'")
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"timeout must be positive, got {value}")
    return seconds


def read_file(path: Path) -> bytes:
    """Read a whole file; SystemExit(EXIT_FILE_ERROR) with a message on failure."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        print(f"File not found: {path}", file=sys.stderr)
        raise SystemExit(EXIT_FILE_ERROR)
    except OSError as e:
        print(f"Cannot read {path}: {e.strerror or e}", file=sys.stderr)
        raise SystemExit(EXIT_FILE_ERROR)


# ------------------------------------------------------------------
# salmon-send
# ------------------------------------------------------------------

def build_send_parser() -> argparse.ArgumentParser:
    p = _UsageParser(
        prog="salmon-send",
        description="Sign an Atom document as a Salmon magic envelope and POST it to an endpoint",
    )
    p.add_argument("atom", type=Path, help="Path to the Atom XML payload")
    p.add_argument("private_key", type=Path, help="Path to the PEM RSA private key")
    p.add_argument("endpoint", help="Salmon endpoint URL")
    p.add_argument(
        "--data-type",
        default=DEFAULT_DATA_TYPE,
        help=f"MIME type of the payload (default: {DEFAULT_DATA_TYPE})",
    )
    p.add_argument("--key-id", default=None, help="key_id for the signature (default: key hash)")
    p.add_argument(
        "--timeout",
        type=_positive_seconds,
        default=None,
        help="Request timeout in seconds (default: SALMON_TIMEOUT or no timeout)",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    return p


def send_main(argv: list[str] | None = None) -> int:
    args = build_send_parser().parse_args(argv)
    settings = _settings_or_exit()
    setup_logging(args.verbose or settings.debug)

    payload = read_file(args.atom)
    key_pem = read_file(args.private_key)

    try:
        envelope = sign_envelope(payload, key_pem, data_type=args.data_type, key_id=args.key_id)
    except SigningError as e:
        print(f"Signing failed: {e.message}", file=sys.stderr)
        return EXIT_SIGNING_FAILED

    document = envelope.to_document()
    log.debug("Generated envelope: %s", document)

    timeout = args.timeout if args.timeout is not None else settings.timeout
    try:
        result = deliver(args.endpoint, document, timeout=timeout)
    except TransportError as e:
        print(e.message, file=sys.stderr)
        return EXIT_TRANSPORT_ERROR

    if result.ok:
        print(result.text)
        return EXIT_OK

    print(result.status_code, file=sys.stderr)
    print(result.text)
    return EXIT_HTTP_STATUS


# ------------------------------------------------------------------
# salmon-cli
# ------------------------------------------------------------------

def cmd_keygen(bits: int, out: Optional[Path]) -> int:
    try:
        key = generate_private_key(bits)
    except KeyLoadError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return EXIT_USAGE

    pem = private_key_to_pem(key)
    pub = magic_public_key(key)

    if out is None:
        sys.stdout.write(pem.decode("ascii"))
    else:
        out.write_bytes(pem)
        out.chmod(0o600)
        print(f"Private key written to {out} (KEEP SECRET; DO NOT COMMIT)")

    print(f"MAGIC_PUBLIC_KEY: {pub}")
    print(f"KEY_ID: {pub.key_hash()}")
    return EXIT_OK


def cmd_pubkey(key_path: Path) -> int:
    try:
        key = load_private_key(read_file(key_path))
    except KeyLoadError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return EXIT_SIGNING_FAILED

    pub = magic_public_key(key)
    print(pub)
    print(f"key_id: {pub.key_hash()}")
    return EXIT_OK


def cmd_sign(atom: Path, key_path: Path, *, data_type: str, key_id: Optional[str], as_json: bool) -> int:
    payload = read_file(atom)
    key_pem = read_file(key_path)
    try:
        envelope = sign_envelope(payload, key_pem, data_type=data_type, key_id=key_id)
    except SigningError as e:
        print(f"❌ Signing failed: {e.message}", file=sys.stderr)
        return EXIT_SIGNING_FAILED

    print(envelope.to_json() if as_json else envelope.to_document())
    return EXIT_OK


def _resolve_public_key(value: str) -> MagicPublicKey:
    v = value.strip()
    if not (v.startswith("RSA.") or v.startswith("-----BEGIN") or v.startswith(MAGIC_KEY_PREFIX)):
        # anything else is a path to a key file
        raw = read_file(Path(v))
        try:
            v = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise KeyLoadError(f"Key file {value.strip()} is not text (expected magic key or PEM)") from e
    return parse_public_key(v)


def cmd_verify(envelope_path: Path, *, key: Optional[str], keys_path: Optional[Path], show_payload: bool) -> int:
    try:
        envelope = MagicEnvelope.parse(read_file(envelope_path))
    except EnvelopeError as e:
        print("❌ Envelope invalid")
        print(e.message)
        return EXIT_VERIFY_FAILED

    try:
        if key is not None:
            pub = _resolve_public_key(key)
            ok = envelope.verify(pub)
            signer = pub.key_hash() if ok else None
        else:
            keyring = TrustedKeyRing.load(keys_path)
            signer = envelope.verify_with_keyring(keyring)
            ok = signer is not None
    except (KeyLoadError, KeyRingError) as e:
        print(f"❌ Key error: {e.message}", file=sys.stderr)
        return EXIT_USAGE

    if not ok:
        print("❌ Signature invalid")
        return EXIT_VERIFY_FAILED

    print(f"✅ Signature valid (key_id={signer or '-'}, data_type={envelope.data_type})")
    if show_payload:
        sys.stdout.write(envelope.payload().decode("utf-8", errors="replace"))
        sys.stdout.write("\n")
    return EXIT_OK


def cmd_keys(keys_path: Optional[Path]) -> int:
    source = f"SALMON_KEYS_PATH={keys_path}" if keys_path else "./salmon_keys.json (if present)"
    try:
        ring = TrustedKeyRing.load(keys_path)
    except KeyRingError as e:
        print("❌ Keyring invalid")
        print(f"Source: {source}")
        print(e.message)
        return EXIT_FILE_ERROR

    print("✅ Keyring loaded")
    print(f"Source: {source}")
    print(f"Trusted keys ({len(ring.keys)}):")
    for kid in sorted(ring.keys):
        status = ring.key_status(kid)
        suffix = "" if status == "ok" else f" ({status})"
        print(f"- {kid}{suffix}")
    return EXIT_OK


def cmd_serve(host: str, port: int, keys_path: Optional[Path]) -> int:
    from .integrations.endpoint import start_endpoint

    try:
        ring = TrustedKeyRing.load(keys_path)
    except KeyRingError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return EXIT_FILE_ERROR

    start_endpoint(host=host, port=port, keyring=ring)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    p = _UsageParser(prog="salmon-cli", description="Salmon magic envelope utilities")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")
    sub = p.add_subparsers(dest="command", required=True)

    s_keygen = sub.add_parser("keygen", help="Generate an RSA signing key")
    s_keygen.add_argument("--bits", type=int, default=DEFAULT_KEY_BITS)
    s_keygen.add_argument("--out", type=Path, default=None, help="Write the PEM private key here")

    s_pub = sub.add_parser("pubkey", help="Print the magic public key of a private key")
    s_pub.add_argument("private_key", type=Path)

    s_sign = sub.add_parser("sign", help="Print a signed envelope without sending it")
    s_sign.add_argument("atom", type=Path)
    s_sign.add_argument("private_key", type=Path)
    s_sign.add_argument("--data-type", default=DEFAULT_DATA_TYPE)
    s_sign.add_argument("--key-id", default=None)
    s_sign.add_argument("--json", action="store_true", help=f"Emit {JSON_CONTENT_TYPE} instead of XML")

    s_verify = sub.add_parser("verify", help="Verify an envelope (XML or JSON)")
    s_verify.add_argument("envelope", type=Path)
    s_verify.add_argument("--key", default=None, help="Magic public key, PEM, or a file containing one")
    s_verify.add_argument("--keys", type=Path, default=None, help="Trusted keyring JSON")
    s_verify.add_argument("--payload", action="store_true", help="Print the decoded payload")

    s_keys = sub.add_parser("keys", help="Show the trusted keyring")
    s_keys.add_argument("--keys", type=Path, default=None)

    s_serve = sub.add_parser("serve", help="Run a Salmon endpoint")
    s_serve.add_argument("--host", default="127.0.0.1")
    s_serve.add_argument("--port", type=int, default=7590)
    s_serve.add_argument("--keys", type=Path, default=None)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _settings_or_exit()
    setup_logging(args.verbose or settings.debug)

    keys_path = getattr(args, "keys", None) or settings.keys_path

    if args.command == "keygen":
        return cmd_keygen(args.bits, args.out)
    if args.command == "pubkey":
        return cmd_pubkey(args.private_key)
    if args.command == "sign":
        return cmd_sign(
            args.atom,
            args.private_key,
            data_type=args.data_type,
            key_id=args.key_id,
            as_json=args.json,
        )
    if args.command == "verify":
        return cmd_verify(args.envelope, key=args.key, keys_path=keys_path, show_payload=args.payload)
    if args.command == "keys":
        return cmd_keys(keys_path)
    # serve
    return cmd_serve(args.host, args.port, keys_path)


if __name__ == "__main__":
    raise SystemExit(main())
