from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.errors import AuthError
from app.identity import VerifiedIdentity, get_identity_verifier

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier=Depends(get_identity_verifier),
) -> VerifiedIdentity:
    """Verify the ``Authorization: Bearer <ID token>`` header on every request."""
    token = (credentials.credentials if credentials else "").strip()
    if not token:
        raise AuthError("Missing identity token")
    return verifier.verify(token)
