import re

import pytest

from cicadatix import ticketcode

TICKET_PATTERN = re.compile(r"^CICADA-[A-Z0-9]+-[A-Z0-9]+$")


def test_generate_matches_format():
    code = ticketcode.generate()
    assert TICKET_PATTERN.match(code)
    assert ticketcode.is_valid(code)


def test_generate_encodes_timestamp_in_base36():
    code = ticketcode.generate(now_ms=1_700_000_000_000)
    _, ts, suffix = code.split("-")
    assert int(ts, 36) == 1_700_000_000_000
    assert len(suffix) == ticketcode.RANDOM_LEN


def test_generate_is_unique_within_one_millisecond():
    codes = {ticketcode.generate(now_ms=42) for _ in range(2000)}
    assert len(codes) == 2000


def test_to_base36():
    assert ticketcode.to_base36(0) == "0"
    assert ticketcode.to_base36(35) == "z"
    assert ticketcode.to_base36(36) == "10"
    with pytest.raises(ValueError):
        ticketcode.to_base36(-1)


@pytest.mark.parametrize("code", [
    "",
    "CICADA",
    "CICADA--ABC",
    "CICADA-ABC-",
    "cicada-abc-def",
    "TICKET-ABC-DEF",
    "CICADA-ABC-DEF-GHI",
    "CICADA-AB_C-DEF",
    "CICADA-ABC-DEF\nX",
])
def test_is_valid_rejects_malformed(code):
    assert not ticketcode.is_valid(code)


def test_is_valid_rejects_non_strings():
    assert not ticketcode.is_valid(None)
    assert not ticketcode.is_valid(12345)
