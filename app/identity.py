"""
Identity verification for ID tokens presented by the chat client.

Production tokens are Firebase ID tokens (RS256, signed with Google's
rotating x509 keys). Development and tests use locally signed HS256 tokens.
Every call verifies the token again; only the provider's public keys are
cached.
"""
import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests
from fastapi import Depends
from jose import JWTError, jwt

from app.config import Settings, get_settings
from app.errors import AuthError

logger = logging.getLogger(__name__)

FIREBASE_ISSUER_PREFIX = "https://securetoken.google.com/"
DEFAULT_CERT_MAX_AGE_SECONDS = 3600
MAX_UID_LENGTH = 128
MIN_FORCED_REFRESH_SECONDS = 60


@dataclass(frozen=True)
class VerifiedIdentity:
    user_id: str
    email: Optional[str] = None


def _uid_from_claims(claims: dict) -> str:
    uid = claims.get("sub")
    if not isinstance(uid, str) or not uid.strip() or len(uid) > MAX_UID_LENGTH:
        raise AuthError("Authentication failed")
    return uid.strip()


def _email_from_claims(claims: dict) -> Optional[str]:
    email = claims.get("email")
    if isinstance(email, str) and email.strip():
        return email.strip().lower()
    return None


def _cache_max_age(cache_control: Optional[str]) -> int:
    match = re.search(r"max-age=(\d+)", cache_control or "")
    if not match:
        return DEFAULT_CERT_MAX_AGE_SECONDS
    return int(match.group(1))


class FirebaseIdentityVerifier:
    def __init__(
        self,
        project_id: str,
        certs_url: str,
        timeout: float,
        min_refresh_interval: float = MIN_FORCED_REFRESH_SECONDS,
    ) -> None:
        self.project_id = project_id
        self.issuer = f"{FIREBASE_ISSUER_PREFIX}{project_id}"
        self._certs_url = certs_url
        self._timeout = timeout
        self._min_refresh_interval = min_refresh_interval
        self._certs: dict[str, str] = {}
        self._certs_fetched_at = 0.0
        self._certs_expire_at = 0.0
        # _lock guards the cache; _refresh_lock serializes downloads.
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    def _cached_certs(self, force_refresh: bool) -> Optional[dict[str, str]]:
        now = time.time()
        if not self._certs or now >= self._certs_expire_at:
            return None
        if force_refresh and now - self._certs_fetched_at >= self._min_refresh_interval:
            return None
        return self._certs

    def _download_certs(self) -> tuple[dict[str, str], int]:
        try:
            response = requests.get(self._certs_url, timeout=self._timeout)
        except requests.RequestException as exc:
            logger.error("Failed to fetch identity provider certificates: %s", exc)
            raise AuthError("Unable to verify identity right now.") from exc

        if response.status_code >= 400:
            logger.error("Identity provider certificate fetch returned %s", response.status_code)
            raise AuthError("Unable to verify identity right now.")

        try:
            certs = response.json()
        except ValueError as exc:
            raise AuthError("Unable to verify identity right now.") from exc
        if not isinstance(certs, dict) or not certs:
            raise AuthError("Unable to verify identity right now.")

        certs = {str(kid): str(pem) for kid, pem in certs.items()}
        return certs, _cache_max_age(response.headers.get("Cache-Control"))

    def _signing_certs(self, force_refresh: bool = False) -> dict[str, str]:
        """
        Current signing certificates. A forced refresh is honoured at most
        once per ``min_refresh_interval``, so unknown key ids cannot turn
        every request into a download.
        """
        with self._lock:
            certs = self._cached_certs(force_refresh)
        if certs is not None:
            return certs

        with self._refresh_lock:
            # Another thread may have refreshed while we waited.
            with self._lock:
                certs = self._cached_certs(force_refresh)
            if certs is not None:
                return certs

            certs, max_age = self._download_certs()
            with self._lock:
                self._certs = certs
                self._certs_fetched_at = time.time()
                self._certs_expire_at = self._certs_fetched_at + max_age
                return self._certs

    def verify(self, token: Optional[str]) -> VerifiedIdentity:
        token = (token or "").strip()
        if not token:
            raise AuthError("Missing identity token")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise AuthError("Authentication failed")
        if header.get("alg") != "RS256" or not header.get("kid"):
            raise AuthError("Authentication failed")

        kid = str(header["kid"])
        cert = self._signing_certs().get(kid)
        if cert is None:
            # Keys rotate; refetch once before giving up.
            cert = self._signing_certs(force_refresh=True).get(kid)
        if cert is None:
            raise AuthError("Authentication failed")

        try:
            claims = jwt.decode(
                token,
                cert,
                algorithms=["RS256"],
                audience=self.project_id,
                issuer=self.issuer,
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
        except JWTError:
            raise AuthError("Authentication failed")

        auth_time = claims.get("auth_time")
        if auth_time is not None:
            if not isinstance(auth_time, (int, float)) or auth_time > time.time():
                raise AuthError("Authentication failed")

        return VerifiedIdentity(user_id=_uid_from_claims(claims), email=_email_from_claims(claims))


class LocalJwtIdentityVerifier:
    def __init__(self, secret_key: str, algorithm: str = "HS256") -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm

    def issue_token(
        self,
        user_id: str,
        email: Optional[str] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
        to_encode = {"sub": user_id, "exp": expire}
        if email:
            to_encode["email"] = email
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def verify(self, token: Optional[str]) -> VerifiedIdentity:
        token = (token or "").strip()
        if not token:
            raise AuthError("Missing identity token")
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            raise AuthError("Authentication failed")
        return VerifiedIdentity(user_id=_uid_from_claims(claims), email=_email_from_claims(claims))


def build_identity_verifier(settings: Settings):
    if settings.identity_provider == "local":
        return LocalJwtIdentityVerifier(settings.secret_key, settings.algorithm)
    return FirebaseIdentityVerifier(
        project_id=settings.firebase_project_id,
        certs_url=settings.firebase_certs_url,
        timeout=settings.identity_timeout_seconds,
    )


_verifier = None
_verifier_lock = threading.Lock()


def get_identity_verifier(settings: Settings = Depends(get_settings)):
    global _verifier
    if _verifier is not None:
        return _verifier
    with _verifier_lock:
        if _verifier is None:
            _verifier = build_identity_verifier(settings)
    return _verifier
