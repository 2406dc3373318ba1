from fastapi import Header, HTTPException, status

from settlement_api.core.settings import settings


async def require_service_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    """Guard operator endpoints; disabled when no service key is configured."""

    if not settings.service_api_key:
        return

    if x_api_key != settings.service_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
