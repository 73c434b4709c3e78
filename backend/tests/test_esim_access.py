import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from app.services.adapters import esim_access
from app.services.adapters.base import PartnerRejected, PartnerTimeout
from app.services.adapters.esim_access import (
    EsimAccessClient,
    order_from_payload,
    parse_partner_time,
    profile_from_payload,
    usage_from_payload,
)


def test_parse_partner_time_variants():
    expected = datetime(2026, 3, 1, 11, 30, tzinfo=timezone.utc)
    assert parse_partner_time("2026-03-01T11:30:00+0000") == expected
    assert parse_partner_time("2026-03-01T11:30:00Z") == expected
    assert parse_partner_time("2026-03-01 11:30:00 UTC") == expected
    assert parse_partner_time("2026-03-01T13:30:00+0200") == expected
    assert parse_partner_time("yesterday") is None
    assert parse_partner_time(None) is None


def test_profile_activation_string_shapes():
    assert profile_from_payload({"ac": "LPA:1$a.example$C1"}).activation_string == "LPA:1$a.example$C1"
    assert profile_from_payload({"confirmationCode": "1$b.example$C2"}).activation_string == "1$b.example$C2"
    split = profile_from_payload({"smdpAddress": "c.example", "activationCode": "C3", "qrCodeUrl": "https://q"})
    assert split.activation_string == "LPA:1$c.example$C3"
    assert split.install_url == "https://q"
    assert profile_from_payload({"smdpAddress": "c.example"}).activation_string is None


def test_order_payload_reads_either_list():
    o = order_from_payload({"orderNo": "B1", "esimList": [{"iccid": "89", "esimTranNo": "T1"}]})
    assert o.partner_order_id == "B1"
    assert o.first_profile.transaction_ref == "T1"
    assert order_from_payload({}, fallback_id="B2").first_profile is None


def test_usage_payload_needs_ref_and_numbers():
    s = usage_from_payload({"esimTranNo": "T1", "dataUsage": "10", "totalData": 100})
    assert (s.bytes_used, s.bytes_total) == (10, 100)
    assert usage_from_payload({"esimTranNo": "T1", "dataUsage": "x", "totalData": 100}) is None
    assert usage_from_payload({"dataUsage": 1, "totalData": 100}) is None


def _client_with(monkeypatch, handler):
    def build(base_url="", timeout=None):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), timeout=timeout)

    monkeypatch.setattr(esim_access, "build_async_client", build)
    return EsimAccessClient("https://partner.test/api/v1/open", "code", timeout=2, max_batch=10)


def test_create_order_success(monkeypatch):
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["code"] = request.headers["RT-AccessCode"]
        return httpx.Response(200, json={"success": True, "errorCode": "0", "obj": {"orderNo": "B9", "esimList": []}})

    client = _client_with(monkeypatch, handler)
    order = asyncio.run(client.create_order("SKU-1", "order-1"))
    assert order.partner_order_id == "B9"
    assert seen == {"path": "/api/v1/open/esim/order", "code": "code"}


@pytest.mark.parametrize(
    "response, error",
    [
        (httpx.Response(503, text="down"), PartnerTimeout),
        (httpx.Response(401, text="bad code"), PartnerRejected),
        (httpx.Response(200, json={"success": False, "errorCode": "900001", "errorMsg": "busy"}), PartnerTimeout),
        (httpx.Response(200, json={"success": False, "errorCode": "200007", "errorMsg": "balance"}), PartnerRejected),
        (httpx.Response(200, text="<html>"), PartnerTimeout),
    ],
)
def test_error_mapping(monkeypatch, response, error):
    client = _client_with(monkeypatch, lambda request: response)
    with pytest.raises(error):
        asyncio.run(client.get_order_status("B1"))


def test_transport_timeout_is_partner_timeout(monkeypatch):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    client = _client_with(monkeypatch, handler)
    with pytest.raises(PartnerTimeout):
        asyncio.run(client.create_order("SKU", "ref"))


def test_usage_query_respects_batch_limit(monkeypatch):
    client = _client_with(
        monkeypatch,
        lambda request: httpx.Response(
            200,
            json={"success": True, "obj": {"esimUsageList": [{"esimTranNo": "T1", "dataUsage": 5, "totalData": 9}, {"bogus": 1}]}},
        ),
    )
    samples = asyncio.run(client.get_usage(["T1"]))
    assert [s.transaction_ref for s in samples] == ["T1"]
    with pytest.raises(ValueError):
        asyncio.run(client.get_usage([f"T{i}" for i in range(11)]))
