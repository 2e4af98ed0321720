from fastapi import Header, HTTPException


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity. Authentication itself happens upstream; we only read the header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="User not authenticated")
    return x_user_id.strip()
