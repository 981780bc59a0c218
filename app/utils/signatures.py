import hashlib
import hmac


def compute_payment_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    """Return the hex HMAC-SHA256 Razorpay signs checkout callbacks with."""
    signed_payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(
        key_secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def verify_payment_signature(key_secret: str, order_id: str, payment_id: str, signature: str | None) -> bool:
    """
    Constant-time check of a client-reported checkout signature.
    A mismatch is a normal outcome and returns False rather than raising.
    """
    if not key_secret or not signature:
        return False
    expected_signature = compute_payment_signature(key_secret, order_id or "", payment_id or "")
    # compare_digest refuses non-ASCII str input; compare bytes instead.
    return hmac.compare_digest(
        expected_signature.encode("utf-8"),
        signature.strip().encode("utf-8"),
    )
