from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.services.claim_token import ClaimTokenError, verify_claim_token
from app.services.notifier import Notifier, notifier

# Declares the X-API-Key header in OpenAPI schema
api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)

# Crawler runs present their job-scoped claim credential as a bearer token
claim_token_scheme = HTTPBearer(auto_error=False)


async def require_api_key(api_key: str = Security(api_key_scheme)) -> str:
    """FastAPI dependency — validates the X-API-Key header on every operator endpoint."""
    if not api_key or api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return api_key


def require_claim_scope(scope: str) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Build a dependency that returns the verified claim payload if it grants *scope*."""

    async def _dependency(
        credentials: HTTPAuthorizationCredentials | None = Security(claim_token_scheme),
    ) -> dict[str, Any]:
        try:
            payload = verify_claim_token(credentials.credentials if credentials else "")
        except ClaimTokenError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=str(exc),
                headers={"WWW-Authenticate": "Bearer"},
            ) from exc
        if scope not in payload["scope"]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Credential does not grant '{scope}'",
            )
        return payload

    return _dependency


def get_notifier() -> Notifier:
    """FastAPI dependency for the notification dispatcher (overridden in tests)."""
    return notifier
