"""HMAC-SHA256 signing and verification for webhook bodies."""
import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


def sign_payload(body: Union[bytes, str], secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Check a signature header against body. Accepts bare hex or "sha256=<hex>",
    compared in constant time.
    """
    if not signature_header or not secret:
        return False
    provided = signature_header.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = sign_payload(body, secret)
    return hmac.compare_digest(provided.lower(), expected)
