"""
Security Utility
----------------
Handles:
- JWT token creation and verification (request identity only)
- Bearer credential extraction
- PII masking for bank details and idempotency keys in logs
"""

import os
import hashlib
import secrets
import jwt
from jwt import ExpiredSignatureError, InvalidTokenError
from typing import Optional, Dict, Any
from datetime import datetime, timedelta
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from cropclaim.config import config
from cropclaim.utils.logger import logger

# =========================================================
# 🔐 JWT Setup
# =========================================================
# auto_error=False so local/test requests without a token reach the actor resolver
bearer_scheme = HTTPBearer(auto_error=False)

# Use configured key or generate a temporary one for dev
JWT_SECRET = config.JWT_SECRET or secrets.token_hex(32)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRY_MINUTES = int(os.getenv("JWT_EXPIRY_MINUTES", "30"))


def create_jwt_token(data: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    """
    Create a signed JWT token with expiry.
    Example payload: {"sub": "REV-001", "role": "reviewer"}
    """
    expire_time = datetime.utcnow() + timedelta(minutes=expires_minutes or JWT_EXPIRY_MINUTES)
    payload = {**data, "exp": expire_time, "type": "access"}
    token = jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)
    logger.info(f"JWT created for {data.get('sub', 'unknown')}")
    return token


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Verify JWT and return the decoded payload; 401 on expired/invalid tokens."""
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except ExpiredSignatureError:
        logger.warning("JWT token expired")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except InvalidTokenError:
        logger.warning("Invalid JWT token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def actor_from_token(token: str) -> Dict[str, Any]:
    payload = verify_jwt_token(token)
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    return {"actor_id": subject, "role": payload.get("role", "reviewer")}


# =========================================================
# 🔒 PII Anonymization
# =========================================================
def anonymize_pii(data: str, method: str = "sha256") -> str:
    """
    Anonymize personally identifiable information.
    Supports:
    - "sha256" → irreversible hash (first 16 hex chars)
    - "mask" → keep the last 4 characters
    """
    if not data:
        return ""

    if method == "sha256":
        return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]

    elif method == "mask":
        if len(data) <= 4:
            return "*" * len(data)
        return "*" * (len(data) - 4) + data[-4:]

    logger.warning(f"Unknown anonymization method: {method}")
    return data


def mask_bank_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Bank details safe for logs: account number masked, IFSC kept."""
    if not details:
        return {}
    masked = dict(details)
    if masked.get("account_number"):
        masked["account_number"] = anonymize_pii(str(masked["account_number"]), method="mask")
    if masked.get("account_holder"):
        masked["account_holder"] = anonymize_pii(str(masked["account_holder"]))
    return masked


def mask_idempotency_key(key: Optional[str]) -> Optional[str]:
    """Idempotency keys are bearer-like; log only a stable hash."""
    if not key:
        return key
    return f"idem-{anonymize_pii(key)}"
