import pytest

from app.services.activation import build_activation_string, parse_activation_string
from app.services.adapters.base import IncompleteActivationDetails


def test_parse_full_string():
    d = parse_activation_string("1$smdp.example.com$ABC123")
    assert d.version == "1"
    assert d.smdp_address == "smdp.example.com"
    assert d.activation_code == "ABC123"


def test_parse_accepts_lpa_prefix():
    d = parse_activation_string("LPA:1$rsp.example.net$K2-ZZ9")
    assert d.smdp_address == "rsp.example.net"
    assert d.activation_code == "K2-ZZ9"
    assert d.lpa_string == "LPA:1$rsp.example.net$K2-ZZ9"


@pytest.mark.parametrize("raw", ["1$smdp.example.com", "1$smdp.example.com$", "1$$ABC", "", None, "garbage"])
def test_incomplete_strings_rejected(raw):
    with pytest.raises(IncompleteActivationDetails):
        parse_activation_string(raw)


def test_build_string():
    assert build_activation_string("smdp.example.com", "X1") == "LPA:1$smdp.example.com$X1"
