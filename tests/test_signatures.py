"""
Tests for Razorpay checkout signature verification.
"""
import hashlib
import hmac

import pytest

from app.utils.signatures import compute_payment_signature, verify_payment_signature

SECRET = "test_razorpay_secret"


def _flip_bit(value: str, index: int = 0) -> str:
    flipped = chr(ord(value[index]) ^ 0x01)
    return value[:index] + flipped + value[index + 1:]


def test_signature_matches_reference_hmac():
    expected = hmac.new(SECRET.encode(), b"order_abc|pay_123", hashlib.sha256).hexdigest()
    assert compute_payment_signature(SECRET, "order_abc", "pay_123") == expected


@pytest.mark.parametrize(
    "order_id,payment_id",
    [("order_abc", "pay_123"), ("order_Nx7Q2LmP0", "pay_Zk81Yw"), ("order_1", "pay_1")],
)
def test_valid_signature_verifies(order_id, payment_id):
    signature = compute_payment_signature(SECRET, order_id, payment_id)
    assert verify_payment_signature(SECRET, order_id, payment_id, signature) is True


def test_single_bit_mutations_are_rejected():
    signature = compute_payment_signature(SECRET, "order_abc", "pay_123")

    assert verify_payment_signature(SECRET, _flip_bit("order_abc", 6), "pay_123", signature) is False
    assert verify_payment_signature(SECRET, "order_abc", _flip_bit("pay_123", 4), signature) is False
    assert verify_payment_signature(_flip_bit(SECRET, 3), "order_abc", "pay_123", signature) is False
    assert verify_payment_signature(SECRET, "order_abc", "pay_123", _flip_bit(signature, 10)) is False


def test_swapped_identifiers_are_rejected():
    signature = compute_payment_signature(SECRET, "order_abc", "pay_123")
    assert verify_payment_signature(SECRET, "pay_123", "order_abc", signature) is False


@pytest.mark.parametrize("signature", ["", None, "not-a-signature", "é" * 64])
def test_garbage_signatures_return_false(signature):
    assert verify_payment_signature(SECRET, "order_abc", "pay_123", signature) is False


def test_missing_secret_never_verifies():
    signature = compute_payment_signature("", "order_abc", "pay_123")
    assert verify_payment_signature("", "order_abc", "pay_123", signature) is False
