from fastapi import Header, HTTPException

from beacon.database import get_db
from beacon.services.session_store import SessionStore, SQLiteSessionStore


async def get_user_id(x_user_id: str | None = Header(None)) -> str:
    """Opaque stable user id from the upstream identity provider."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


async def get_session_store() -> SessionStore:
    return SQLiteSessionStore(await get_db())
