"""
Bearer token auth for pharmacy owners.

Tokens are HS256 JWTs carrying the pharmacy id and the owner's contact.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_token(pharmacy_id: str, owner_id: Optional[str] = None, expiry_days: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "pharmacyId": pharmacy_id,
        "ownerId": owner_id,
        "iat": now,
        "exp": now + timedelta(days=expiry_days if expiry_days is not None else config.JWT_EXPIRY_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode a token, raising jwt.InvalidTokenError when it is bad or expired"""
    payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    if not payload.get("pharmacyId"):
        raise jwt.InvalidTokenError("Token has no pharmacyId")
    return payload


def warn_if_default_secret() -> bool:
    """Log a warning when tokens are signed with the built-in secret"""
    if config.JWT_SECRET != config.DEFAULT_JWT_SECRET:
        return False
    logger.warning("JWT_SECRET is not set; tokens are signed with the built-in default secret")
    return True


def current_pharmacy_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    """FastAPI dependency returning the caller's pharmacy id"""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    try:
        payload = decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {str(e)}")
        raise HTTPException(status_code=401, detail="Token is not valid")
    return str(payload["pharmacyId"])
