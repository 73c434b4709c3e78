from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol


class PartnerError(Exception):
    """Generic partner error (network/auth/partner response)."""


class PartnerTimeout(PartnerError):
    """No answer (timeout, unreachable, 5xx, busy). Retried by the next reconciliation pass."""


class PartnerRejected(PartnerError):
    """Explicit error response. Terminal for the attempt that got it."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class IncompleteActivationDetails(PartnerError):
    """Partner answered, but without both SM-DP+ address and activation code."""


@dataclass
class ProfileDetails:
    transaction_ref: str | None = None
    iccid: str | None = None
    activation_string: str | None = None
    install_url: str | None = None
    expires_at: datetime | None = None


@dataclass
class PartnerOrder:
    partner_order_id: str
    status: str = ""
    profiles: list[ProfileDetails] = field(default_factory=list)

    @property
    def first_profile(self) -> ProfileDetails | None:
        return self.profiles[0] if self.profiles else None


@dataclass
class UsageSample:
    transaction_ref: str
    bytes_used: int
    bytes_total: int
    sampled_at: datetime


class ProvisioningClient(Protocol):
    async def create_order(self, sku: str, customer_reference: str) -> PartnerOrder: ...

    async def top_up(self, iccid: str, sku: str, customer_reference: str) -> PartnerOrder: ...

    async def get_order_status(self, partner_order_id: str) -> PartnerOrder: ...


class MeteringClient(Protocol):
    max_batch: int

    async def get_usage(self, transaction_refs: list[str]) -> list[UsageSample]: ...
