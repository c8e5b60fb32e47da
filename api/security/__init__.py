import uuid

from fastapi import Header, HTTPException, status

from config import get_env


async def require_service_key(x_api_key: str | None = Header(None)):
    api_key = get_env().SERVICE_API_TOKEN
    if not api_key:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="API key not configured")
    if not x_api_key or x_api_key != api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service key")
    return True


# аутентификация живёт в основном приложении, сюда приходит уже проверенный id
async def get_subject(x_user_id: uuid.UUID | None = Header(None)) -> uuid.UUID | None:
    return x_user_id


async def get_visitor_session(x_visitor_session: str | None = Header(None)) -> str | None:
    return x_visitor_session
