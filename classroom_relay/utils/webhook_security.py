import hashlib
import hmac
import json
from typing import Optional


def canonical_json(body) -> str:
    """Compact JSON with non-ASCII kept, matching how Zoom serialises the signed body."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def hmac_hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def challenge_response(secret: str, plain_token: str) -> dict:
    return {"plainToken": plain_token, "encryptedToken": hmac_hex(secret, plain_token)}


def expected_signature(secret: str, timestamp: str, body) -> str:
    return "v0=" + hmac_hex(secret, f"v0:{timestamp}:{canonical_json(body)}")


def verify_signature(secret: str, timestamp: Optional[str], signature: Optional[str], body) -> bool:
    if not (secret and timestamp and signature):
        return False
    return hmac.compare_digest(signature, expected_signature(secret, timestamp, body))
