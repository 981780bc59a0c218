"""
Tests for ID token verification (local HS256 and Firebase RS256).
"""
import time
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from jose import jwt

from app import identity
from app.errors import AuthError
from app.identity import FirebaseIdentityVerifier, LocalJwtIdentityVerifier

PROJECT_ID = "chat-app-test"
CERTS_URL = "https://certs.example.test/securetoken"


def test_local_token_roundtrip():
    verifier = LocalJwtIdentityVerifier("a-strong-local-secret")
    token = verifier.issue_token("user_1", email="Trader@Example.com")

    verified = verifier.verify(token)
    assert verified.user_id == "user_1"
    assert verified.email == "trader@example.com"


def test_local_token_expired():
    verifier = LocalJwtIdentityVerifier("a-strong-local-secret")
    token = verifier.issue_token("user_1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(AuthError):
        verifier.verify(token)


def test_local_token_wrong_secret():
    token = LocalJwtIdentityVerifier("secret-one-is-long").issue_token("user_1")
    with pytest.raises(AuthError):
        LocalJwtIdentityVerifier("secret-two-is-long").verify(token)


@pytest.mark.parametrize("token", ["", "   ", None, "not.a.jwt"])
def test_local_rejects_garbage(token):
    with pytest.raises(AuthError):
        LocalJwtIdentityVerifier("a-strong-local-secret").verify(token)


def test_local_requires_subject():
    secret = "a-strong-local-secret"
    token = jwt.encode({"exp": datetime.now(timezone.utc) + timedelta(minutes=5)}, secret, algorithm="HS256")
    with pytest.raises(AuthError):
        LocalJwtIdentityVerifier(secret).verify(token)


@pytest.fixture(scope="module")
def signing_material():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "securetoken.test")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
    return private_pem, cert_pem


class _CertResponse:
    def __init__(self, certs, cache_control="public, max-age=600"):
        self.status_code = 200
        self.headers = {"Cache-Control": cache_control}
        self._certs = certs

    def json(self):
        return self._certs


@pytest.fixture
def cert_server(monkeypatch, signing_material):
    _, cert_pem = signing_material
    calls = []

    def fake_get(url, timeout):
        calls.append((url, timeout))
        return _CertResponse({"kid-1": cert_pem})

    monkeypatch.setattr(identity.requests, "get", fake_get)
    return calls


def _firebase_token(private_pem, kid="kid-1", **overrides):
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "aud": PROJECT_ID,
        "sub": "firebase-uid-123",
        "email": "user@example.com",
        "auth_time": now - 60,
        "iat": now - 60,
        "exp": now + 3600,
    }
    claims.update(overrides)
    # None drops the claim entirely.
    claims = {name: value for name, value in claims.items() if value is not None}
    return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})


def _verifier():
    return FirebaseIdentityVerifier(PROJECT_ID, CERTS_URL, timeout=2)


def test_firebase_token_verifies(cert_server, signing_material):
    private_pem, _ = signing_material
    verified = _verifier().verify(_firebase_token(private_pem))

    assert verified.user_id == "firebase-uid-123"
    assert verified.email == "user@example.com"
    assert cert_server == [(CERTS_URL, 2)]


def test_firebase_certs_are_cached_but_tokens_are_always_checked(cert_server, signing_material):
    private_pem, _ = signing_material
    verifier = _verifier()
    token = _firebase_token(private_pem)

    verifier.verify(token)
    verifier.verify(token)
    assert len(cert_server) == 1

    with pytest.raises(AuthError):
        verifier.verify(_firebase_token(private_pem, exp=int(time.time()) - 10))


@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "another-project"},
        {"iss": "https://securetoken.google.com/another-project"},
        {"sub": ""},
        {"auth_time": int(time.time()) + 3600},
        {"exp": None},
        {"iat": None},
        {"sub": None},
    ],
)
def test_firebase_rejects_bad_claims(cert_server, signing_material, overrides):
    private_pem, _ = signing_material
    with pytest.raises(AuthError):
        _verifier().verify(_firebase_token(private_pem, **overrides))


def test_firebase_unknown_kid_fails_without_hammering_provider(cert_server, signing_material):
    private_pem, _ = signing_material
    verifier = _verifier()
    with pytest.raises(AuthError):
        verifier.verify(_firebase_token(private_pem, kid="rotated-away"))

    for i in range(50):
        token = jwt.encode({"sub": "x"}, private_pem, algorithm="RS256", headers={"kid": f"random-{i}"})
        with pytest.raises(AuthError):
            verifier.verify(token)

    # The certificates were fetched moments ago, so forced refreshes are skipped.
    assert len(cert_server) == 1


def test_firebase_unknown_kid_refetches_after_interval(monkeypatch, signing_material):
    private_pem, cert_pem = signing_material
    served = [{"old-kid": cert_pem}, {"kid-1": cert_pem}]
    calls = []

    def rotating_get(url, timeout):
        calls.append(url)
        return _CertResponse(served[min(len(calls), len(served)) - 1])

    monkeypatch.setattr(identity.requests, "get", rotating_get)
    verifier = FirebaseIdentityVerifier(PROJECT_ID, CERTS_URL, timeout=2, min_refresh_interval=0)

    verified = verifier.verify(_firebase_token(private_pem, kid="kid-1"))

    assert verified.user_id == "firebase-uid-123"
    assert len(calls) == 2


def test_firebase_rejects_hs256_tokens(cert_server):
    token = jwt.encode({"sub": "x"}, "secret", algorithm="HS256", headers={"kid": "kid-1"})
    with pytest.raises(AuthError):
        _verifier().verify(token)


def test_firebase_cert_fetch_failure_is_auth_error(monkeypatch, signing_material):
    private_pem, _ = signing_material

    def failing_get(url, timeout):
        raise identity.requests.ConnectionError("unreachable")

    monkeypatch.setattr(identity.requests, "get", failing_get)
    with pytest.raises(AuthError):
        _verifier().verify(_firebase_token(private_pem))
