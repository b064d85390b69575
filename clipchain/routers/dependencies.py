"""
Shared router dependencies
"""

from typing import Optional

from fastapi import Header, HTTPException, status


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity forwarded by the fronting auth layer"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: missing X-User-Id header",
        )
    return x_user_id.strip()
