"""
Unit tests for the Idealista feed parser.
"""
import json

import pytest

from propfeed.core.errors import NormalizationError, ParseError
from propfeed.core.models import OperationKind, PropertyStatus
from propfeed.sources.idealista.parser import FeedFormat, FeedParser, synthesize_id


@pytest.fixture
def parser():
    return FeedParser()


def by_id(properties):
    return {p.id: p for p in properties}


class TestDecode:
    """Tests for FeedParser.decode."""

    @pytest.mark.unit
    def test_format_from_filename(self):
        assert FeedFormat.from_filename("export_20240301.XML") is FeedFormat.XML
        assert FeedFormat.from_filename("feed.json") is FeedFormat.JSON

    @pytest.mark.unit
    def test_format_from_unsupported_filename(self):
        with pytest.raises(ParseError):
            FeedFormat.from_filename("feed.csv")

    @pytest.mark.unit
    def test_decode_xml_wraps_root_and_groups_repeated(self, parser, xml_feed_bytes):
        tree = parser.decode(xml_feed_bytes, FeedFormat.XML)

        assert list(tree) == ["ads"]
        assert len(tree["ads"]["ad"]) == 4

    @pytest.mark.unit
    def test_decode_xml_attributes_and_namespaces(self, parser):
        data = b'<feed xmlns="urn:x"><ad id="7"><price currency="EUR">100</price></ad></feed>'

        tree = parser.decode(data, FeedFormat.XML)

        assert tree == {"feed": {"ad": {"id": "7", "price": {"currency": "EUR", "#text": "100"}}}}

    @pytest.mark.unit
    @pytest.mark.parametrize("data, fmt", [
        (b"<ads><ad><id>1</id></ads>", FeedFormat.XML),
        (b'{"properties": [', FeedFormat.JSON),
        (b"\xff\xfe\x00garbage", FeedFormat.JSON),
        (b"   ", FeedFormat.XML),
    ])
    def test_decode_malformed_raises_parse_error(self, parser, data, fmt):
        with pytest.raises(ParseError):
            parser.decode(data, fmt)


class TestCanonicalize:
    """Tests for FeedParser.canonicalize."""

    @pytest.mark.unit
    def test_lowercases_keys_and_collapses_singletons(self, parser):
        tree = {"Ads": [{"AD": [{"Id": ["1"], "Pictures": [{"URL": "a"}, {"URL": "b"}]}]}]}

        assert parser.canonicalize(tree) == {
            "ads": {"ad": {"id": "1", "pictures": [{"url": "a"}, {"url": "b"}]}}
        }

    @pytest.mark.unit
    def test_top_level_list_kept(self, parser):
        assert parser.canonicalize([{"ID": "1"}]) == [{"id": "1"}]

    @pytest.mark.unit
    def test_idempotent(self, parser, xml_feed_bytes):
        once = parser.canonicalize(parser.decode(xml_feed_bytes, FeedFormat.XML))

        assert parser.canonicalize(once) == once


class TestNormalize:
    """Tests for FeedParser.normalize on complete feeds."""

    @pytest.mark.unit
    def test_xml_feed_fields(self, parser, xml_feed_bytes):
        properties = parser.normalize(parser.decode(xml_feed_bytes, FeedFormat.XML))
        flat = by_id(properties)["1001"]

        assert flat.reference == "REF-1001"
        assert flat.operation.kind is OperationKind.SALE
        assert flat.operation.price == 250000
        assert flat.operation.currency == "EUR"
        assert flat.property_type == "homes"
        assert flat.title == "homes in Madrid"
        assert flat.address.street == "Calle Mayor"
        assert flat.address.postal_code == "28013"
        assert flat.address.coordinates.latitude == pytest.approx(40.4168)
        assert flat.features.rooms == 3
        assert flat.features.bathrooms == 2
        assert flat.features.area_constructed == 95
        assert flat.features.floor == "3"
        assert flat.amenities == ["lift"]
        assert [(d.language, d.text) for d in flat.descriptions] == [
            ("es", "Piso luminoso en el centro"),
            ("en", "Bright flat in the centre"),
        ]
        assert [i.url for i in flat.images] == [
            "https://img.example.com/1001/facade.jpg",
            "https://img.example.com/1001/kitchen.jpg",
        ]
        assert flat.images[1].tag == "kitchen"

    @pytest.mark.unit
    def test_rent_office_and_bedroom_fallback(self, parser, xml_feed_bytes):
        properties = by_id(parser.normalize(parser.decode(xml_feed_bytes, FeedFormat.XML)))

        office = properties["1002"]
        assert office.operation.kind is OperationKind.RENT
        assert office.operation.price == 1200
        assert office.property_type == "offices"
        assert office.address.city == "Valencia"
        assert office.address.province == "Valencia"

        assert properties["1003"].features.rooms == 4

    @pytest.mark.unit
    def test_missing_price_defaults_to_zero(self, parser, xml_feed_bytes):
        """Three complete records and one without price yield four properties."""
        properties = parser.normalize(parser.decode(xml_feed_bytes, FeedFormat.XML))

        assert len(properties) == 4
        no_price = by_id(properties)["1004"]
        assert no_price.operation.price == 0
        assert no_price.address.city == "Sevilla"
        assert no_price.descriptions == []
        assert no_price.images == []

    @pytest.mark.unit
    def test_json_feed_fields(self, parser, json_feed_bytes):
        properties = by_id(parser.normalize(parser.decode(json_feed_bytes, FeedFormat.JSON)))

        attic = properties["J-1"]
        assert attic.title == "Atico con vistas"
        assert attic.operation.price == 180000
        assert attic.operation.kind is OperationKind.SALE
        assert attic.property_type == "homes"
        assert attic.address.city == "Barcelona"
        assert attic.features.rooms == 2
        assert attic.features.area_constructed == 75
        assert [i.position for i in attic.images] == [1, 2]
        assert attic.descriptions[0].text == "Atico reformado"
        assert attic.published_at.year == 2024

        rental = properties["J-2"]
        assert rental.operation.kind is OperationKind.RENT
        assert rental.operation.price == 950
        assert rental.status is PropertyStatus.INACTIVE
        assert rental.modified_at.isoformat() == "2024-03-01T10:00:00+00:00"

    @pytest.mark.unit
    def test_malformed_record_dropped(self, parser):
        feed = json.dumps({"properties": [
            {"id": "1", "price": "100"},
            "not a record",
            {"id": "2", "price": "200"},
            {"id": "3", "price": "300"},
        ]}).encode()

        properties = parser.normalize(parser.decode(feed, FeedFormat.JSON))

        assert [p.id for p in properties] == ["1", "2", "3"]

    @pytest.mark.unit
    def test_malformed_xml_record_dropped(self, parser):
        feed = b"<ads><ad><id>1</id></ad><ad>just text</ad><ad><id>2</id></ad></ads>"

        properties = parser.normalize(parser.decode(feed, FeedFormat.XML))

        assert [p.id for p in properties] == ["1", "2"]

    @pytest.mark.unit
    def test_duplicate_ids_keep_first(self, parser):
        tree = {"properties": [
            {"id": "1", "price": "100"},
            {"id": "1", "price": "999"},
        ]}

        properties, report = parser.normalize_with_report(tree)

        assert len(properties) == 1
        assert properties[0].operation.price == 100
        assert report.duplicates == 1

    @pytest.mark.unit
    def test_missing_id_is_synthesized_deterministically(self, parser):
        tree = {"properties": [{"city": "Madrid", "price": "5"}]}

        first = parser.normalize(tree)[0].id
        second = parser.normalize(tree)[0].id

        assert first.startswith("prop-")
        assert first == second
        assert first == synthesize_id({"city": "Madrid", "price": "5"})

    @pytest.mark.unit
    @pytest.mark.parametrize("tree", [
        {"Ads": {"AD": [{"id": "1"}, {"id": "2"}]}},
        {"properties": {"property": [{"id": "1"}, {"id": "2"}]}},
        {"inmuebles": [{"id": "1"}, {"id": "2"}]},
        {"property": [{"id": "1"}, {"id": "2"}]},
        [{"id": "1"}, {"id": "2"}],
    ])
    def test_container_shapes(self, parser, tree):
        assert [p.id for p in parser.normalize(tree)] == ["1", "2"]

    @pytest.mark.unit
    def test_records_with_property_block_are_not_a_container(self, parser):
        feed = json.dumps({"properties": [
            {
                "id": str(n),
                "price": str(n * 1000),
                "property": {
                    "housing": {"roomNumber": "2"},
                    "address": {"town": "Madrid"},
                },
            }
            for n in (1, 2, 3)
        ]}).encode()

        properties = parser.normalize(parser.decode(feed, FeedFormat.JSON))

        assert [(p.id, p.operation.price, p.features.rooms) for p in properties] == [
            ("1", 1000, 2),
            ("2", 2000, 2),
            ("3", 3000, 2),
        ]

    @pytest.mark.unit
    def test_single_record_array_with_property_block(self, parser):
        tree = {"properties": [{"id": "7", "price": "500", "property": {"type": "oficina"}}]}

        properties = parser.normalize(tree)

        assert [(p.id, p.operation.price, p.property_type) for p in properties] == [
            ("7", 500, "offices"),
        ]

    @pytest.mark.unit
    def test_empty_feed(self, parser):
        tree = parser.decode(b"<ads></ads>", FeedFormat.XML)

        assert parser.normalize(tree) == []

    @pytest.mark.unit
    def test_unknown_layout_raises_parse_error(self, parser):
        with pytest.raises(ParseError):
            parser.normalize({"listings": [{"id": "1"}]})

    @pytest.mark.unit
    def test_normalize_record_rejects_non_mapping(self, parser):
        with pytest.raises(NormalizationError) as exc_info:
            parser.normalize_record(["a", "b"], index=3)

        assert exc_info.value.record_index == 3

    @pytest.mark.unit
    def test_invalid_coordinates_absent(self, parser):
        prop = parser.normalize_record({"id": "1", "latitude": "north", "longitude": "2.1"})

        assert prop.address.coordinates is None

    @pytest.mark.unit
    def test_custom_container_path(self):
        parser = FeedParser(container_paths=["listings"])

        assert [p.id for p in parser.normalize({"listings": [{"id": "1"}]})] == ["1"]


class TestParserProperties:
    """Invariants over every supported feed."""

    @pytest.mark.unit
    @pytest.mark.parametrize("fixture_name, fmt", [
        ("xml_feed_bytes", FeedFormat.XML),
        ("json_feed_bytes", FeedFormat.JSON),
    ])
    def test_ids_unique_and_values_non_negative(self, parser, request, fixture_name, fmt):
        data = request.getfixturevalue(fixture_name)

        properties = parser.normalize(parser.decode(data, fmt))

        ids = [p.id for p in properties]
        assert len(ids) == len(set(ids))
        for prop in properties:
            assert prop.operation.price >= 0
            assert prop.features.area_constructed >= 0

    @pytest.mark.unit
    @pytest.mark.parametrize("fixture_name, fmt", [
        ("xml_feed_bytes", FeedFormat.XML),
        ("json_feed_bytes", FeedFormat.JSON),
    ])
    def test_normalize_is_idempotent(self, parser, request, fixture_name, fmt):
        tree = parser.decode(request.getfixturevalue(fixture_name), fmt)

        first = [p.model_dump() for p in parser.normalize(tree)]
        second = [p.model_dump() for p in parser.normalize(tree)]

        assert first == second
