"""
HTTP delivery of a magic envelope to a Salmon endpoint.

One POST per call, no retry. Any HTTP response (whatever the status) is a
``DeliveryResult``; only failures that produce no response at all (DNS,
connection refused, timeout, TLS) raise ``TransportError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import requests

from .envelope import XML_CONTENT_TYPE
from .errors import TransportError

log = logging.getLogger("salmon_send.delivery")


@dataclass
class DeliveryResult:
    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def deliver(
    url: str,
    document: str,
    *,
    content_type: str = XML_CONTENT_TYPE,
    timeout: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> DeliveryResult:
    """
    POST ``document`` to ``url``.

    ``timeout`` is in seconds; None waits indefinitely.
    """
    http = session or requests
    log.info("POST %s (%d bytes, %s)", url, len(document), content_type)
    try:
        resp = http.post(
            url,
            data=document.encode("utf-8"),
            headers={"Content-Type": content_type},
            timeout=timeout,
        )
    except requests.RequestException as e:
        log.debug("Transport failure for %s: %r", url, e)
        raise TransportError(str(e), details={"url": url, "exception_type": type(e).__name__}) from e

    log.info("%s answered %d", url, resp.status_code)
    return DeliveryResult(
        status_code=resp.status_code,
        body=resp.content,
        headers=dict(resp.headers),
    )
