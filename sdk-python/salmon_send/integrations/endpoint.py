"""
Salmon endpoint – minimal receiving server for magic envelopes.

Endpoints
---------
POST /salmon
    Content-Type: application/magic-envelope+xml  (or +json)
    Body: magic envelope document
    200:  {"verified": true,  "key_id": "…", "data_type": "…", "error": null}
    400:  {"verified": false, "error": {"code": "SALMON_ENVELOPE_INVALID", "message": "…"}}
    403:  {"verified": false, "error": {"code": "SALMON_SIGNATURE_INVALID", "message": "…"}}

GET  /health
    200:  {"status": "ok"}

Design notes
------------
* stdlib ``http.server`` only.
* Signers are trusted through a ``TrustedKeyRing`` (see ``salmon_send.keys``).
* Binds to 127.0.0.1 by default.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Deque, Dict, Optional, Tuple

from salmon_send.config import debug_enabled
from salmon_send.envelope import JSON_CONTENT_TYPE, XML_CONTENT_TYPE, MagicEnvelope
from salmon_send.errors import EnvelopeError, SalmonErrorCode
from salmon_send.keys import TrustedKeyRing

log = logging.getLogger("salmon_send.endpoint")

# Maximum request body size (1MB)
MAX_REQUEST_BYTES = 1024 * 1024

# Socket read timeout (seconds) while reading the request body
READ_TIMEOUT_SECS = 5.0

ACCEPTED_CONTENT_TYPES = (XML_CONTENT_TYPE, JSON_CONTENT_TYPE, "application/xml", "text/xml")

SALMON_PATH = "/salmon"

# Most recent accepted envelopes kept on the server
RECEIVED_MAX = 100


def _json_response(handler: BaseHTTPRequestHandler, status: int, body: Dict[str, Any]) -> None:
    payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(payload)))
    handler.end_headers()
    handler.wfile.write(payload)


def _error_body(code: SalmonErrorCode, message: str) -> Dict[str, Any]:
    return {"verified": False, "error": {"code": code.value, "message": message}}


def _read_envelope_body(handler: BaseHTTPRequestHandler) -> bytes:
    """Read the raw request body. Raises ValueError on bad input."""
    length_str = handler.headers.get("Content-Length")
    if not length_str:
        raise ValueError("Missing Content-Length header")

    try:
        length = int(length_str)
    except ValueError:
        log.warning("Malformed Content-Length header: %r", length_str)
        raise ValueError(f"Invalid Content-Length header: '{length_str}'")

    if length <= 0:
        raise ValueError("Empty request body")
    if length > MAX_REQUEST_BYTES:
        log.warning("Oversized request body: %d bytes (max %d)", length, MAX_REQUEST_BYTES)
        raise ValueError(f"Request body too large: {length} bytes (max {MAX_REQUEST_BYTES})")

    original_timeout = handler.connection.gettimeout()
    try:
        handler.connection.settimeout(READ_TIMEOUT_SECS)
        raw = handler.rfile.read(length)
    finally:
        handler.connection.settimeout(original_timeout)

    if len(raw) < length:
        raise ValueError(f"Incomplete request body: expected {length} bytes, got {len(raw)}")

    # Content-Type is checked once the body has been consumed
    content_type = handler.headers.get("Content-Type", "")
    media_type = content_type.split(";")[0].strip().lower()
    if media_type not in ACCEPTED_CONTENT_TYPES:
        raise ValueError(f"Expected Content-Type {XML_CONTENT_TYPE}, got '{content_type}'")
    return raw


def handle_envelope(body: bytes, *, keyring: TrustedKeyRing) -> Tuple[int, Dict[str, Any], Optional[MagicEnvelope]]:
    """
    Parse and verify one envelope document.

    Returns (http_status, response_body, envelope-or-None). Never raises for
    bad input.
    """
    try:
        env = MagicEnvelope.parse(body)
    except EnvelopeError as e:
        log.info("REJECT reason=invalid_envelope message=%s", e.message)
        result = _error_body(e.code, e.message)
        if debug_enabled() and e.details:
            result["error"]["details"] = e.details
        return 400, result, None

    key_id = env.verify_with_keyring(keyring)
    if key_id is None:
        kids = [s.key_id for s in env.sigs]
        log.info("REJECT reason=bad_signature key_ids=%s", kids)
        result = _error_body(SalmonErrorCode.SIGNATURE_INVALID, "No signature verified against a trusted key")
        if debug_enabled():
            result["error"]["details"] = {
                "key_ids": kids,
                "key_status": {k: keyring.key_status(k) for k in kids if k},
            }
        return 403, result, None

    log.info("ACCEPT key_id=%s data_type=%s", key_id, env.data_type)
    return 200, {"verified": True, "key_id": key_id, "data_type": env.data_type, "error": None}, env


def _method_not_allowed(handler: BaseHTTPRequestHandler) -> None:
    _json_response(handler, 405, {"error": "Method not allowed"})


class SalmonEndpointHandler(BaseHTTPRequestHandler):
    """
    Request handler. Keyring and received envelopes live on the *server*
    instance (see ``SalmonEndpointServer``).
    """

    def log_message(self, fmt: str, *args: Any) -> None:  # type: ignore[override]
        log.debug(fmt, *args)

    def do_GET(self) -> None:
        if self.path.rstrip("/") == "/health":
            _json_response(self, 200, {"status": "ok"})
            return
        _json_response(self, 404, {"error": "Not found"})

    def do_POST(self) -> None:
        if self.path.rstrip("/") != SALMON_PATH:
            _json_response(self, 404, {"error": "Not found"})
            return

        try:
            body = _read_envelope_body(self)
        except ValueError as e:
            _json_response(self, 400, _error_body(SalmonErrorCode.ENVELOPE_INVALID, str(e)))
            return

        srv: SalmonEndpointServer = self.server  # type: ignore[assignment]
        status, result, env = handle_envelope(body, keyring=srv.keyring)
        if env is not None:
            srv.received.append(env)
        _json_response(self, status, result)

    do_PUT = _method_not_allowed
    do_DELETE = _method_not_allowed
    do_PATCH = _method_not_allowed


class SalmonEndpointServer(HTTPServer):
    """HTTPServer subclass holding the trusted keyring."""

    def __init__(self, server_address: tuple, *, keyring: Optional[TrustedKeyRing] = None) -> None:
        super().__init__(server_address, SalmonEndpointHandler)
        self.keyring = keyring or TrustedKeyRing.empty()
        self.received: Deque[MagicEnvelope] = deque(maxlen=RECEIVED_MAX)


def start_endpoint(
    *,
    host: str = "127.0.0.1",
    port: int = 7590,
    keyring: Optional[TrustedKeyRing] = None,
) -> None:
    """
    Start the Salmon endpoint (blocking). Single-threaded: one request at a
    time.
    """
    server = SalmonEndpointServer((host, port), keyring=keyring)
    log.info(
        "Salmon endpoint listening on http://%s:%d%s (%d trusted keys)",
        host, port, SALMON_PATH, len(server.keyring.active_keys()),
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log.info("Salmon endpoint shutting down")
    finally:
        server.server_close()
