from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException, status
from jose import jwt
from jose.exceptions import JWSError, JWTError

from adscrape.config import settings

logger = logging.getLogger(__name__)

JWKS_TTL_SECONDS = 300


class JWKSCache:
    """Clerk signing keys by ``kid``, refreshed every few minutes or on an unknown ``kid``."""

    def __init__(self, ttl_seconds: int = JWKS_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._keys: Dict[str, Dict[str, Any]] = {}
        self._fetched_at = 0.0

    def clear(self) -> None:
        self._keys = {}
        self._fetched_at = 0.0

    def key_for(self, kid: str) -> Optional[Dict[str, Any]]:
        refreshed = False
        if not self._fresh():
            self._refresh()
            refreshed = True
        key = self._keys.get(kid)
        if key is None and not refreshed:
            # Clerk rotated keys since the last fetch.
            self._refresh()
            key = self._keys.get(kid)
        return key

    def _fresh(self) -> bool:
        return bool(self._keys) and (time.time() - self._fetched_at) < self.ttl_seconds

    def _refresh(self) -> None:
        try:
            resp = httpx.get(settings.CLERK_JWKS_URL, timeout=10)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("clerk.jwks_fetch_failed", extra={"jwks_url": settings.CLERK_JWKS_URL})
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Unable to fetch Clerk JWKS",
            ) from exc
        self._keys = {key["kid"]: key for key in payload.get("keys", []) if isinstance(key, dict) and key.get("kid")}
        self._fetched_at = time.time()


jwks_cache = JWKSCache()


def _audience_allowed(claims: Dict[str, Any]) -> bool:
    allowed = set(settings.CLERK_AUDIENCE)
    if not allowed:
        return True
    aud = claims.get("aud")
    if aud is None:
        # Clerk session tokens omit aud unless a custom template sets it; rely on azp then.
        aud = claims.get("azp")
    audiences = aud if isinstance(aud, list) else [aud]
    return any(value in allowed for value in audiences if value)


def verify_clerk_token(token: str) -> Dict[str, Any]:
    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    if not kid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing kid in token")

    public_key = jwks_cache.key_for(kid)
    if public_key is None:
        logger.warning("clerk.signing_key_not_found", extra={"kid": kid})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Signing key not found")

    try:
        claims = jwt.decode(
            token,
            public_key,
            algorithms=[public_key.get("alg", "RS256")],
            issuer=settings.CLERK_JWT_ISSUER,
            options={"verify_aud": False},
        )
    except (JWTError, JWSError) as exc:
        logger.warning("clerk.token_rejected", extra={"kid": kid, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    if not _audience_allowed(claims):
        logger.warning("clerk.audience_rejected", extra={"kid": kid, "aud": claims.get("aud")})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token audience")
    return claims
