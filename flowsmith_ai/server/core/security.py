"""Verification of the internal JWTs sent by the executor's HTTP clients."""

from typing import Annotated, Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from flowsmith_ai.core.logging_config import get_logger
from flowsmith_ai.server.core.config import settings

logger = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


def verify_internal_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(_bearer)],
) -> Dict[str, Any]:
    """Decode the bearer token and require ``type == "internal"``."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        payload = jwt.decode(credentials.credentials, settings.internal_api.secret, algorithms=["HS256"])
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected internal token: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from e
    if payload.get("type") != "internal":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    return payload


InternalTokenDep = Annotated[Dict[str, Any], Depends(verify_internal_token)]
