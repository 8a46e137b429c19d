"""HMAC/shared-secret authentication for admin endpoints."""

import hashlib
import hmac

from fastapi import HTTPException, Request

from ..config import settings


async def verify_admin(request: Request):
    """Validate admin requests when ``LQE_API_SECRET`` is configured.

    Header options (checked in order):
    1. X-LQE-Signature: HMAC-SHA256 of the request body using LQE_API_SECRET
    2. X-LQE-Secret: direct match against LQE_API_SECRET
    """
    secret = settings.api_secret
    if not secret:
        return True

    body = await request.body()

    signature = request.headers.get("X-LQE-Signature")
    if signature:
        expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        if hmac.compare_digest(signature, expected):
            return True

    provided = request.headers.get("X-LQE-Secret")
    if provided and hmac.compare_digest(provided, secret):
        return True

    raise HTTPException(
        status_code=401,
        detail={"success": False, "error": "auth_error", "detail": "Invalid or missing authentication"},
    )
