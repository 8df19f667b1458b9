# app/api/deps.py
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import uuid

from app.core.security import decode_access_token

# Security schemes
optional_security = HTTPBearer(auto_error=False)

async def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)
) -> uuid.UUID:
    """
    Resolve the calling user's id from a bearer token found in:
    - Authorization header
    - Query parameters
    - Cookies

    Accounts live in an external identity service; this service only trusts
    the token's ``sub`` claim.
    """
    token = None

    if credentials and credentials.credentials:
        token = credentials.credentials

    # From query parameter
    if not token:
        token = request.query_params.get("token") or request.query_params.get("access_token")

    # From cookie
    if not token:
        token = request.cookies.get("access_token")
        if token and token.startswith("Bearer "):
            token = token[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = decode_access_token(token)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
