from __future__ import annotations

from app.core.config import settings
from app.services.adapters.esim_access import EsimAccessClient
from app.services.rate_limit import partner_limiter


def get_partner_client() -> EsimAccessClient:
    """One client serves both provisioning and metering; the partner exposes both."""
    return EsimAccessClient(
        settings.ESIMACCESS_API_URL,
        settings.ESIMACCESS_ACCESS_CODE,
        timeout=float(settings.HTTP_TIMEOUT_SECONDS),
        max_batch=settings.ESIMACCESS_USAGE_MAX_BATCH,
        limiter=partner_limiter(),
    )
