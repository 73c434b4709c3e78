from __future__ import annotations
from dataclasses import dataclass
from app.services.adapters.base import IncompleteActivationDetails

LPA_PREFIX = "LPA:"


@dataclass(frozen=True)
class ActivationDetails:
    version: str
    smdp_address: str
    activation_code: str

    @property
    def lpa_string(self) -> str:
        return build_activation_string(self.smdp_address, self.activation_code, self.version)


def parse_activation_string(raw: str | None) -> ActivationDetails:
    """Split ``<version>$<SM-DP+ address>$<activation code>`` (optionally ``LPA:``-prefixed).

    Raises IncompleteActivationDetails when either the address or the code is
    missing; the order then stays in provisioning for the next recovery pass.
    """
    value = (raw or "").strip()
    if value.upper().startswith(LPA_PREFIX):
        value = value[len(LPA_PREFIX):]
    parts = value.split("$")
    version = parts[0].strip() if parts else ""
    smdp = parts[1].strip() if len(parts) >= 2 else ""
    code = parts[2].strip() if len(parts) >= 3 else ""
    if not smdp or not code:
        raise IncompleteActivationDetails(f"incomplete activation string: {raw!r}"[:200])
    return ActivationDetails(version=version or "1", smdp_address=smdp, activation_code=code)


def build_activation_string(smdp_address: str, activation_code: str, version: str = "1") -> str:
    return f"{LPA_PREFIX}{version}${smdp_address}${activation_code}"
