"""
Unit tests for feed tree path resolution helpers.
"""
from datetime import datetime, timezone

import pytest

from propfeed.sources.idealista.extraction import (
    as_list,
    first_present,
    parse_digits,
    parse_float,
    parse_timestamp,
    resolve_container,
    resolve_path,
    scalar,
    unwrap,
)


@pytest.mark.unit
def test_unwrap():
    assert unwrap([["x"]]) == "x"
    assert unwrap([]) is None
    assert unwrap("x") == "x"
    assert unwrap({"a": 1}) == {"a": 1}


@pytest.mark.unit
def test_as_list():
    assert as_list(None) == []
    assert as_list({"a": 1}) == [{"a": 1}]
    assert as_list([1, 2]) == [1, 2]


@pytest.mark.unit
def test_resolve_path_unwraps_intermediate_lists():
    tree = {"ads": [{"ad": [{"id": "1"}, {"id": "2"}]}]}

    assert resolve_path(tree, "ads.ad") == [{"id": "1"}, {"id": "2"}]
    assert resolve_path(tree, "ads.ad.id") == "1"
    assert resolve_path(tree, "ads.missing") is None
    assert resolve_path("leaf", "ads") is None


@pytest.mark.unit
def test_resolve_container_walks_mappings_only():
    wrapped = {"Properties": {"Property": [{"id": "1"}, {"id": "2"}]}}
    listed = {"properties": [{"id": "1", "property": {"type": "piso"}}]}

    assert resolve_container(wrapped, "properties.property") == [{"id": "1"}, {"id": "2"}]
    assert resolve_container(listed, "properties.property") is None
    assert resolve_container(listed, "properties") == listed["properties"]
    assert resolve_container("leaf", "properties") is None


@pytest.mark.unit
def test_scalar_reads_element_text():
    assert scalar({"#text": "95", "unit": "m2"}) == "95"
    assert scalar({"nested": "x"}) is None
    assert scalar(["7"]) == "7"


@pytest.mark.unit
def test_first_present_skips_empty_and_containers():
    record = {
        "price": "",
        "prices": {"byoperation": {"sale": {"price": "120000"}}},
        "precio": "99",
    }

    assert first_present(record, ["price", "prices", "prices.byoperation.sale.price", "precio"]) == "120000"
    assert first_present(record, ["nothing", "also.nothing"]) is None


@pytest.mark.unit
@pytest.mark.parametrize("value, expected", [
    ("250.000 €", 250000),
    ("€ 1,200", 1200),
    (950, 950),
    (85.7, 85),
    ("n/a", None),
    (None, None),
    (True, None),
    (-3, None),
])
def test_parse_digits(value, expected):
    assert parse_digits(value) == expected


@pytest.mark.unit
def test_parse_float():
    assert parse_float("40,4168") == pytest.approx(40.4168)
    assert parse_float("-3.7") == pytest.approx(-3.7)
    assert parse_float("north") is None
    assert parse_float("nan") is None


@pytest.mark.unit
def test_parse_timestamp_formats():
    expected = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2024-03-01T10:00:00Z") == expected
    assert parse_timestamp("2024-03-01T11:00:00+01:00") == expected
    assert parse_timestamp("2024-03-01T10:00:00") == expected
    assert parse_timestamp(1709287200) == expected
    assert parse_timestamp("1709287200000") == expected
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp("") is None
