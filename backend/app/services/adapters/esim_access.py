from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from app.services.adapters.base import (
    PartnerOrder,
    PartnerRejected,
    PartnerTimeout,
    ProfileDetails,
    UsageSample,
)
from app.services.http_client import build_async_client
from app.services.rate_limit import SharedRateLimiter

logger = logging.getLogger(__name__)

# errorCode values the partner documents as "try again later"
_BUSY_CODES = {"900001"}
_OK_CODES = {None, "", "0"}
_TZ_COMPACT = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_partner_time(value: Any) -> datetime | None:
    """Partner timestamps come as ISO-8601, '... UTC' or with a +HHMM offset."""
    if not value:
        return None
    s = str(value).strip()
    if s.endswith(" UTC"):
        s = s[:-4] + "+00:00"
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    s = _TZ_COMPACT.sub(r"\1:\2", s)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _first_str(item: dict[str, Any], *keys: str) -> str | None:
    for k in keys:
        v = item.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def profile_from_payload(item: dict[str, Any]) -> ProfileDetails:
    """Normalize one profile entry.

    Depending on API version the activation string arrives as ``ac``, inside
    ``confirmationCode``/``activationCode``, or split into an address field
    plus a bare activation code.
    """
    activation = _first_str(item, "ac")
    if not activation:
        for key in ("confirmationCode", "activationCode"):
            v = _first_str(item, key)
            if v and "$" in v:
                activation = v
                break
    if not activation:
        smdp = _first_str(item, "smdpAddress", "smdp")
        code = _first_str(item, "activationCode", "matchingId")
        if smdp and code:
            activation = f"LPA:1${smdp}${code}"
    return ProfileDetails(
        transaction_ref=_first_str(item, "esimTranNo", "transactionRef"),
        iccid=_first_str(item, "iccid"),
        activation_string=activation,
        install_url=_first_str(item, "qrCodeUrl", "qrUrl", "shortUrl"),
        expires_at=parse_partner_time(item.get("expiredTime")),
    )


def order_from_payload(obj: dict[str, Any], fallback_id: str = "") -> PartnerOrder:
    items = obj.get("esimList") or obj.get("detailList") or []
    profiles = [profile_from_payload(it) for it in items if isinstance(it, dict)]
    return PartnerOrder(
        partner_order_id=str(obj.get("orderNo") or obj.get("orderId") or fallback_id),
        status=str(obj.get("orderStatus") or obj.get("status") or ""),
        profiles=profiles,
    )


def usage_from_payload(item: dict[str, Any], now: datetime | None = None) -> UsageSample | None:
    ref = _first_str(item, "esimTranNo", "transactionRef")
    used = item.get("dataUsage", item.get("orderUsage"))
    total = item.get("totalData", item.get("totalVolume"))
    if not ref or used is None or total is None:
        return None
    try:
        used_i, total_i = int(used), int(total)
    except (TypeError, ValueError):
        return None
    sampled_at = parse_partner_time(item.get("lastUpdateTime")) or now or datetime.now(timezone.utc)
    return UsageSample(transaction_ref=ref, bytes_used=used_i, bytes_total=total_i, sampled_at=sampled_at)


class EsimAccessClient:
    def __init__(
        self,
        base_url: str,
        access_code: str,
        timeout: float = 15.0,
        max_batch: int = 10,
        limiter: SharedRateLimiter | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_batch = max(1, int(max_batch))
        self._access_code = access_code
        self._limiter = limiter

    async def aclose(self) -> None:
        if self._limiter is not None:
            await self._limiter.close()

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "RT-AccessCode": self._access_code}

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        # the partner uses POST for everything, reads included
        if self._limiter is not None:
            await self._limiter.wait("global")
        url = f"{self.base_url}{path}"
        try:
            async with build_async_client(timeout=self.timeout) as client:
                r = await client.post(url, json=body, headers=self._headers())
        except httpx.TimeoutException as e:
            raise PartnerTimeout(f"timeout POST {path}") from e
        except httpx.TransportError as e:
            raise PartnerTimeout(f"unreachable POST {path}: {str(e)[:200]}") from e

        if r.status_code >= 500:
            raise PartnerTimeout(f"HTTP {r.status_code} POST {path}")
        if r.status_code >= 400:
            raise PartnerRejected(f"HTTP {r.status_code} POST {path}: {r.text[:300]}", code=str(r.status_code))

        try:
            js = r.json()
        except ValueError as e:
            raise PartnerTimeout(f"non-JSON response POST {path}") from e
        if not isinstance(js, dict):
            raise PartnerTimeout(f"unexpected response shape POST {path}")

        code = js.get("errorCode")
        code = None if code is None else str(code)
        if js.get("success") is True or code in _OK_CODES:
            obj = js.get("obj")
            return obj if isinstance(obj, dict) else {}
        if code in _BUSY_CODES:
            raise PartnerTimeout(f"partner busy POST {path}")
        raise PartnerRejected(f"{code} - {js.get('errorMsg') or 'request failed'}", code=code)

    async def create_order(self, sku: str, customer_reference: str) -> PartnerOrder:
        obj = await self._post(
            "/esim/order",
            {
                # lets the partner dedupe a re-submitted order
                "transactionId": customer_reference,
                "packageInfoList": [{"packageCode": sku, "count": 1}],
            },
        )
        order = order_from_payload(obj)
        if not order.partner_order_id:
            raise PartnerTimeout("order response missing orderNo")
        return order

    async def top_up(self, iccid: str, sku: str, customer_reference: str) -> PartnerOrder:
        obj = await self._post(
            "/esim/topup",
            {"iccid": iccid, "packageCode": sku, "transactionId": customer_reference},
        )
        return order_from_payload(obj, fallback_id=customer_reference)

    async def get_order_status(self, partner_order_id: str) -> PartnerOrder:
        obj = await self._post(
            "/esim/query",
            {"orderNo": partner_order_id, "pager": {"pageNum": 1, "pageSize": 100}},
        )
        return order_from_payload(obj, fallback_id=partner_order_id)

    async def get_usage(self, transaction_refs: list[str]) -> list[UsageSample]:
        if len(transaction_refs) > self.max_batch:
            raise ValueError(f"at most {self.max_batch} profiles per usage query")
        if not transaction_refs:
            return []
        obj = await self._post("/esim/usage/query", {"esimTranNoList": list(transaction_refs)})
        samples: list[UsageSample] = []
        for item in obj.get("esimUsageList") or []:
            if not isinstance(item, dict):
                continue
            sample = usage_from_payload(item)
            if sample is None:
                logger.warning("usage entry skipped: unreadable shape keys=%s", sorted(item.keys())[:10])
                continue
            samples.append(sample)
        return samples
