import os
import requests
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from dotenv import load_dotenv
from typing import Dict

from .logger import get_logger

load_dotenv()

logger = get_logger(__name__)

# Service URLs from environment variables or defaults
USER_SERVICE_URL = os.getenv("USER_SERVICE_URL", "http://user-service:8000")

ROLES = {"CUSTOMER", "VENDOR", "ADMIN"}

# Security scheme for Bearer token
security = HTTPBearer()


def _normalize_user(user_data: Dict) -> Dict:
    role = str(user_data.get("role") or "CUSTOMER").upper()
    if role not in ROLES:
        role = "CUSTOMER"
    is_admin = bool(user_data.get("is_admin", False)) or role == "ADMIN"
    return {
        "id": user_data["id"],
        "username": user_data.get("username"),
        "email": user_data.get("email"),
        "role": "ADMIN" if is_admin else role,
        "is_admin": is_admin,
    }


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Dict:
    """Resolve the bearer token to a caller through the user service."""
    token = credentials.credentials

    try:
        headers = {"Authorization": f"Bearer {token}"}
        response = requests.get(
            f"{USER_SERVICE_URL}/users/me",
            headers=headers,
            timeout=5
        )
    except requests.exceptions.RequestException as e:
        logger.error("User service unreachable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"User service is unavailable: {str(e)}"
        )

    if response.status_code == 200:
        return _normalize_user(response.json())
    if response.status_code == 401:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    logger.error("User service answered %s: %s", response.status_code, response.text)
    raise HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Failed to get user from user service: {response.text}"
    )


def get_current_vendor(current_user: Dict = Depends(get_current_user)) -> Dict:
    if current_user["role"] not in ("VENDOR", "ADMIN"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vendor access required."
        )
    return current_user


def get_current_admin(current_user: Dict = Depends(get_current_user)) -> Dict:
    if not current_user.get("is_admin", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin access required."
        )
    return current_user
