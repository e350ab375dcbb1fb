from dataclasses import dataclass
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from adscrape.auth.clerk import verify_clerk_token

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    user_id: str
    org_id: str


def organisation_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    orgs = claims.get("orgs") or []
    first_org = orgs[0] if orgs and isinstance(orgs[0], dict) else {}
    return claims.get("org_id") or claims.get("organization_id") or first_org.get("id")


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    claims = verify_clerk_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")

    org_id = organisation_from_claims(claims)
    if not org_id:
        logger.warning("auth.missing_organisation", extra={"sub": user_id, "claims_keys": list(claims.keys())})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing organization context in token",
        )
    return AuthContext(user_id=user_id, org_id=str(org_id))
