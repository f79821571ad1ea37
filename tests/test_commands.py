"""Tests for command builders and response parsers."""

import pytest

from skalene_mcp.errors import ProtocolError
from skalene_mcp.protocol.commands import (
    Command,
    build_bootloader_mode,
    build_command,
    build_get_config,
    build_raw_block,
    build_set_config,
    build_set_integration,
)
from skalene_mcp.protocol.parser import (
    parse_live_data,
    parse_raw_block,
    parse_results,
)


def test_build_command_joins_fields():
    assert build_command(Command.RAW_BLOCK, 7) == "11 7"
    assert build_get_config() == "3"
    assert build_bootloader_mode() == "13"


def test_raw_block_range():
    assert build_raw_block(0) == "11 0"
    assert build_raw_block(255) == "11 255"
    with pytest.raises(ValueError):
        build_raw_block(256)
    with pytest.raises(ValueError):
        build_raw_block(-1)


def test_set_integration_range():
    assert build_set_integration(100) == "21 100"
    with pytest.raises(ValueError):
        build_set_integration(49)
    with pytest.raises(ValueError):
        build_set_integration(5001)


def test_set_config_order():
    body = build_set_config([0, 50, 100, 1, 0, 1, 2, 3, 4, 5, 6, 7, 8])
    assert body == "1 0 50 100 1 0 1 2 3 4 5 6 7 8"


def test_parse_results():
    body = "10 1.5 2 3 4 5 6 7 8.25 0"
    assert parse_results(body).values == [1.5, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.25]


def test_parse_results_partial():
    """Fewer than 8 values are returned as sent."""
    assert parse_results("9 1.0 2.0").values == [1.0, 2.0]


def test_parse_results_drops_error_code():
    assert parse_results("10 1.0 2.0 0").values == [1.0, 2.0]


def test_parse_results_non_numeric():
    with pytest.raises(ProtocolError):
        parse_results("10 1.0 x 0")


def test_parse_live_data():
    body = "18 10 20 30 40 50 60 70 80 0"
    assert parse_live_data(body).values == [10, 20, 30, 40, 50, 60, 70, 80]


def test_parse_live_data_partial():
    assert parse_live_data("18 10 20 0").values == [10, 20]


def test_parse_live_data_non_integer():
    with pytest.raises(ProtocolError):
        parse_live_data("18 a 20 30 40 50 60 70 80 0")


def test_parse_raw_block():
    """Samples sit between the block index and the trailing error code."""
    parsed = parse_raw_block("12 4 100 101 102 103 0")
    assert parsed.index == 4
    assert parsed.samples == [100, 101, 102, 103]


def test_parse_raw_block_empty():
    parsed = parse_raw_block("12 4 0")
    assert parsed.samples == []


def test_parse_raw_block_too_short():
    with pytest.raises(ProtocolError):
        parse_raw_block("12 4")
