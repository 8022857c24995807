import logging
import time
from typing import Any, Dict, Optional

import requests
from fastapi import HTTPException, Request
from jose import JWTError, jwt

from Folio.settings import Settings

logger = logging.getLogger(__name__)

_JWKS_TTL_SECONDS: int = 300


# Fetches and caches the signing keys of the identity provider
class JwksCache:
    def __init__(self, jwks_url: str, ttl_seconds: int = _JWKS_TTL_SECONDS):
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self._cache: Optional[Dict[str, Any]] = None
        self._cache_ts: float = 0.0

    def keys(self) -> list[dict]:
        now = time.time()
        if self._cache is not None and (now - self._cache_ts) < self.ttl_seconds:
            return self._cache.get("keys", [])
        try:
            response = requests.get(self.jwks_url, timeout=3.0)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            # Serve stale keys rather than failing every request during an outage
            if self._cache is not None:
                logger.warning("auth.jwks.stale: %s", type(e).__name__)
                return self._cache.get("keys", [])
            raise HTTPException(status_code=503, detail=f"Unable to fetch JWKS: {str(e)}")
        self._cache = data
        self._cache_ts = now
        return data.get("keys", [])

    # Finds the JWK that matches the JWT header `kid`
    def key_for(self, token: str) -> dict:
        unverified_header = jwt.get_unverified_header(token)
        for key in self.keys():
            if key.get("kid") == unverified_header.get("kid"):
                return key
        raise HTTPException(status_code=401, detail="Public key not found.")


# Verifies the bearer token from the Authorization header and returns decoded JWT claims
class JwtVerifier:
    def __init__(self, jwks_url: str, audience: Optional[str] = None):
        self.jwks = JwksCache(jwks_url)
        self.audience = audience
        self.issuer = jwks_url.split("/.well-known/")[0]
        if not audience:
            logger.warning("AUTH_AUDIENCE is not set; audience claim will not be checked.")

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["JwtVerifier"]:
        if not settings.auth_jwks_url:
            return None
        return cls(settings.auth_jwks_url, settings.auth_audience)

    def verify(self, request: Request) -> dict:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing or invalid token.")

        token = auth_header.split(" ")[1]
        if token.count(".") != 2:
            raise HTTPException(status_code=401, detail="Token is not a valid JWT.")

        try:
            key = self.jwks.key_for(token)
            return jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_aud": False} if not self.audience else {},
            )
        except JWTError as e:
            raise HTTPException(status_code=401, detail=f"Token verification failed: {str(e)}")


# Dependency (FastAPI pattern): the authenticated user's id (`sub` claim)
def get_current_user_id(request: Request) -> str:
    verifier: Optional[JwtVerifier] = getattr(request.app.state, "jwt_verifier", None)
    if verifier is None:
        raise HTTPException(status_code=500, detail="AUTH_JWKS_URL is not configured.")
    claims = verifier.verify(request)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject.")
    return user_id
