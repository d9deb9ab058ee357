"""Short-lived credentials handed to crawler runs.

A token is scoped to one job and carries the operations the bearer may
perform against it (claim slices, ingest readings).
"""

import time
import uuid
from typing import Any

import jwt

from app.config import settings

CLAIM_SCOPES = ("claim", "ingest")


class ClaimTokenError(Exception):
    """The credential is missing, malformed, expired or signed with another key."""


def mint_claim_token(
    job_id: uuid.UUID,
    scopes: tuple[str, ...] = CLAIM_SCOPES,
    now: int | None = None,
) -> str:
    """Create an HS256 JWT for *job_id* that expires after ``claim_token_ttl_sec``."""
    issued = int(time.time()) if now is None else now
    payload = {
        "iss": settings.claim_token_issuer,
        "aud": settings.claim_token_audience,
        "job_id": str(job_id),
        "scope": list(scopes),
        "iat": issued,
        "exp": issued + settings.claim_token_ttl_sec,
    }
    return jwt.encode(payload, settings.claim_token_secret, algorithm="HS256")


def verify_claim_token(token: str) -> dict[str, Any]:
    """Decode and validate a claim token, raising ClaimTokenError on any problem."""
    if not token:
        raise ClaimTokenError("missing token")
    try:
        payload = jwt.decode(
            token,
            settings.claim_token_secret,
            algorithms=["HS256"],
            audience=settings.claim_token_audience,
            issuer=settings.claim_token_issuer,
            leeway=settings.claim_token_leeway_sec,
            options={"require": ["exp", "job_id", "scope"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise ClaimTokenError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise ClaimTokenError(f"invalid token: {exc}") from exc

    if not isinstance(payload.get("scope"), list):
        raise ClaimTokenError("invalid token: scope must be a list")
    return payload
