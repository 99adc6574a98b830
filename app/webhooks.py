"""HMAC signing for outbound webhook notification bodies."""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``X-Webhook-Signature`` value for *body*.

    The digest covers the exact bytes sent, so callers must sign the
    serialised body rather than re-serialising it afterwards.
    """
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"
