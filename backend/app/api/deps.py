import hmac
import math
from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.db import get_db
from app.services.adapters.esim_access import EsimAccessClient
from app.services.adapters.factory import get_partner_client
from app.services.downstream import DownstreamNotifier, HttpDownstreamNotifier
from app.services.rate_limit import SharedRateLimiter, webhook_limiter
from app.services.transitions import OrderTransitions

bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin(creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    # admin token is a deployment secret; empty means admin routes are closed
    expected = settings.ADMIN_API_TOKEN
    if not expected or creds is None or not hmac.compare_digest(creds.credentials, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return "admin"


def get_notifier() -> DownstreamNotifier:
    return HttpDownstreamNotifier()


async def get_partner() -> AsyncIterator[EsimAccessClient]:
    client = get_partner_client()
    try:
        yield client
    finally:
        await client.aclose()


async def get_transitions(
    db: AsyncSession = Depends(get_db),
    notifier: DownstreamNotifier = Depends(get_notifier),
) -> OrderTransitions:
    return OrderTransitions(db, notifier)


async def get_webhook_limiter() -> AsyncIterator[SharedRateLimiter]:
    limiter = webhook_limiter()
    try:
        yield limiter
    finally:
        await limiter.close()


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_webhook_rate_limit(
    request: Request,
    limiter: SharedRateLimiter = Depends(get_webhook_limiter),
) -> None:
    decision = await limiter.hit(f"ip:{client_ip(request)}")
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(max(1, math.ceil(decision.retry_after)))},
        )
