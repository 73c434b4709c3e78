from __future__ import annotations
import httpx
from app.core.config import settings

def build_async_client(base_url: str = "", timeout: float | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout or settings.HTTP_TIMEOUT_SECONDS),
        headers={"User-Agent": f"{settings.APP_NAME}/1.0"},
    )
