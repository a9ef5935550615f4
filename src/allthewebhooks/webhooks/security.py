"""Webhook request signing and headers.

Targets with a ``secret`` get HMAC-SHA256 signature headers so receivers
can verify the request came from this server.
"""

import hmac
import hashlib
import time
from typing import Optional, Tuple, Union

from .. import __version__
from .models import WebhookTarget

DEFAULT_USER_AGENT = f"AllTheWebhooks/{__version__}"


def _as_bytes(payload: Union[str, bytes]) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


def generate_signature(
    payload: Union[str, bytes],
    secret: str,
    timestamp: Optional[int] = None
) -> Tuple[str, int]:
    """Generate HMAC-SHA256 signature for webhook payload.

    Args:
        payload: The request body to sign.
        secret: The shared secret key.
        timestamp: Optional Unix timestamp (defaults to current time).

    Returns:
        Tuple of (signature, timestamp) for inclusion in headers.
    """
    if timestamp is None:
        timestamp = int(time.time())

    # Signed message: timestamp.payload
    message = str(timestamp).encode("utf-8") + b"." + _as_bytes(payload)

    signature = hmac.new(
        secret.encode("utf-8"),
        message,
        hashlib.sha256
    ).hexdigest()

    return signature, timestamp


def build_headers(
    target: WebhookTarget,
    body: bytes,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict:
    """Generate headers for an outbound webhook request.

    Args:
        target: The destination (content type, extra headers, secret).
        body: The request body, signed when the target has a secret.
        user_agent: User-Agent header value.

    Returns:
        Dict of headers to include in the webhook request.
    """
    headers = {
        "Content-Type": target.effective_content_type,
        "User-Agent": user_agent,
    }
    headers.update(target.headers)

    if target.secret:
        signature, timestamp = generate_signature(body, target.secret)
        headers["X-Webhook-Signature"] = signature
        headers["X-Webhook-Timestamp"] = str(timestamp)

    return headers
