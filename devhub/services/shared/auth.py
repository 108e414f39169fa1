"""
DevHub operator authentication
-------------------------------
Provides the `get_operator` FastAPI dependency used by all mutating hub endpoints.

When REQUIRE_OPERATOR_KEY=false (default for local use):
  - the acting operator is taken from the X-Operator header, defaulting to "admin"
  - no key validation is performed

When REQUIRE_OPERATOR_KEY=true:
  - X-Operator-Key must match DEVHUB_OPERATOR_KEY
  - returns HTTP 403 if the key is missing or wrong

Usage in a FastAPI route:
    from devhub.services.shared.auth import get_operator

    @router.post("/users/{user_id}/approve")
    async def approve(user_id: str, operator: str = Depends(get_operator)):
        ...
"""

import hmac
import os

from fastapi import Header, HTTPException

REQUIRE_OPERATOR_KEY: bool = os.getenv("REQUIRE_OPERATOR_KEY", "false").lower() == "true"
OPERATOR_KEY: str = os.getenv("DEVHUB_OPERATOR_KEY", "")


def _key_matches(presented: str, expected: str) -> bool:
    return bool(expected) and hmac.compare_digest(presented.encode(), expected.encode())


def get_operator(
    x_operator: str | None = Header(None, alias="X-Operator"),
    x_operator_key: str | None = Header(None, alias="X-Operator-Key"),
) -> str:
    """
    FastAPI dependency: resolves the operator name recorded in the audit trail.
    """
    if not REQUIRE_OPERATOR_KEY:
        return x_operator or "admin"

    if not x_operator_key:
        raise HTTPException(status_code=403, detail="X-Operator-Key header is required.")
    if not _key_matches(x_operator_key, OPERATOR_KEY):
        raise HTTPException(status_code=403, detail="Invalid operator key.")
    return x_operator or "admin"
