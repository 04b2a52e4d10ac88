"""
Idealista feed parser.

Turns feed bytes into canonical Property records in three steps:

1. decode: XML or JSON bytes -> generic tree of dicts, lists and strings
2. canonicalize: lowercase every key, collapse singleton lists
3. normalize: find the record container, apply the field rules per record

A record that cannot be normalized is logged and dropped; the rest of the
batch is kept.
"""
import hashlib
import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from propfeed.core.errors import NormalizationError, ParseError
from propfeed.core.models import (
    Address,
    Coordinates,
    Description,
    Features,
    Image,
    Operation,
    OperationKind,
    Property,
    PropertyStatus,
)
from propfeed.sources.idealista import metadata
from propfeed.sources.idealista.extraction import (
    TEXT_KEY,
    as_list,
    first_container,
    first_present,
    is_empty,
    parse_bool,
    parse_digits,
    parse_float,
    parse_timestamp,
    resolve_container,
    resolve_path,
    text_value,
)
from propfeed.sources.idealista.metadata import FieldRule

logger = logging.getLogger(__name__)


class FeedFormat(str, Enum):
    """Supported wire formats."""
    XML = "xml"
    JSON = "json"

    @classmethod
    def from_filename(cls, filename: str) -> "FeedFormat":
        """
        Infer the format from the file extension.

        Raises:
            ParseError: If the extension is not .xml or .json
        """
        suffix = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        try:
            return cls(suffix)
        except ValueError:
            raise ParseError(f"Unsupported feed format for '{filename}'") from None


@dataclass
class NormalizationReport:
    """Counters for one normalized batch."""
    seen: int = 0
    kept: int = 0
    dropped: int = 0
    duplicates: int = 0


def _local_name(tag: str) -> str:
    # "{namespace}name" -> "name"
    return tag.rsplit("}", 1)[-1]


def _element_to_tree(elem: ET.Element) -> Any:
    """Convert an element into dicts/lists/strings. Repeated children become lists."""
    children = list(elem)
    text = (elem.text or "").strip()

    if not children and not elem.attrib:
        return text

    node: Dict[str, Any] = {_local_name(k): v for k, v in elem.attrib.items()}

    grouped: Dict[str, List[Any]] = {}
    for child in children:
        grouped.setdefault(_local_name(child.tag), []).append(_element_to_tree(child))

    for key, values in grouped.items():
        if key in node:
            values = [node[key]] + values
        node[key] = values[0] if len(values) == 1 else values

    if text:
        node[TEXT_KEY] = text
    return node


def synthesize_id(record: Mapping[str, Any]) -> str:
    """Deterministic identifier for a record without one."""
    payload = json.dumps(record, sort_keys=True, default=str, ensure_ascii=False)
    return "prop-" + hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]


class FeedParser:
    """
    Parser for Idealista feed files.

    Field locations come from metadata.FIELD_RULES and container shapes from
    metadata.CONTAINER_PATHS; both can be overridden per instance.
    """

    def __init__(
        self,
        field_rules: Optional[Dict[str, FieldRule]] = None,
        container_paths: Optional[Sequence[str]] = None,
    ):
        self.field_rules = dict(metadata.FIELD_RULES)
        if field_rules:
            self.field_rules.update(field_rules)
        self.container_paths = tuple(container_paths or metadata.CONTAINER_PATHS)

    # -------------------------------------------------------------------------
    # Decode
    # -------------------------------------------------------------------------

    def decode(self, data: bytes, fmt: FeedFormat) -> Any:
        """
        Decode feed bytes into a generic tree.

        Args:
            data: Raw feed bytes
            fmt: Wire format

        Returns:
            Nested dicts/lists/strings. XML trees are wrapped as {root_tag: content}.

        Raises:
            ParseError: If the bytes are malformed for the format
        """
        try:
            fmt = FeedFormat(fmt)
        except ValueError:
            raise ParseError(f"Unsupported feed format '{fmt}'") from None
        if not data or not data.strip():
            raise ParseError(f"Empty {fmt.value} feed")

        if fmt is FeedFormat.XML:
            try:
                root = ET.fromstring(data)
            except ET.ParseError as e:
                raise ParseError(f"XML parse error: {e}") from e
            return {_local_name(root.tag): _element_to_tree(root)}

        try:
            return json.loads(data.decode("utf-8-sig"))
        except UnicodeDecodeError as e:
            raise ParseError(f"Feed is not valid UTF-8: {e}") from e
        except json.JSONDecodeError as e:
            raise ParseError(f"JSON parse error: {e}") from e

    # -------------------------------------------------------------------------
    # Canonicalize
    # -------------------------------------------------------------------------

    def canonicalize(self, tree: Any) -> Any:
        """
        Lowercase every key and collapse every single-element list.

        A top-level list is kept as a list so a one-record array feed is
        still recognized as a record list. Idempotent.
        """
        if isinstance(tree, list):
            return [self._canonical(item) for item in tree]
        return self._canonical(tree)

    def _canonical(self, value: Any) -> Any:
        if isinstance(value, dict):
            result: Dict[str, Any] = {}
            for key, item in value.items():
                key = str(key).strip().lower()
                item = self._canonical(item)
                # On a case-only clash the first non-empty spelling wins
                if key in result and not is_empty(result[key]):
                    continue
                result[key] = item
            return result

        if isinstance(value, list):
            items = [self._canonical(item) for item in value]
            return items[0] if len(items) == 1 else items

        if isinstance(value, str):
            return value.strip()
        return value

    # -------------------------------------------------------------------------
    # Normalize
    # -------------------------------------------------------------------------

    def find_records(self, tree: Any) -> List[Any]:
        """
        Locate the record list in a decoded tree.

        Runs before singleton lists are collapsed, so a one-record array is
        still a record list and never mistaken for a wrapper mapping.

        Raises:
            ParseError: If no known container shape is present
        """
        if isinstance(tree, list):
            return tree

        for path in self.container_paths:
            value = resolve_container(tree, path)
            if value is not None and not is_empty(value):
                return as_list(value)

        if isinstance(tree, dict) and any(
            str(key).strip().lower() in metadata.CONTAINER_ROOTS for key in tree
        ):
            return []

        keys = sorted(tree)[:10] if isinstance(tree, dict) else type(tree).__name__
        raise ParseError(f"No known record container in feed (top level: {keys})")

    def normalize(self, tree: Any) -> List[Property]:
        """
        Map a decoded tree onto canonical properties.

        Malformed records are dropped, duplicate identifiers keep the first
        occurrence. No per-record error escapes.
        """
        properties, _ = self.normalize_with_report(tree)
        return properties

    def normalize_with_report(self, tree: Any) -> Tuple[List[Property], NormalizationReport]:
        records = [self._canonical(record) for record in self.find_records(tree)]
        report = NormalizationReport(seen=len(records))

        properties: List[Property] = []
        seen_ids = set()
        for index, record in enumerate(records):
            try:
                prop = self.normalize_record(record, index)
            except NormalizationError as e:
                report.dropped += 1
                logger.warning(f"Dropping feed record #{index}: {e.message}")
                continue

            if prop.id in seen_ids:
                report.duplicates += 1
                logger.warning(f"Dropping feed record #{index}: duplicate id {prop.id}")
                continue

            seen_ids.add(prop.id)
            properties.append(prop)

        report.kept = len(properties)
        logger.info(
            f"Normalized feed: {report.seen} records seen, {report.kept} kept, "
            f"{report.dropped} dropped, {report.duplicates} duplicates"
        )
        return properties, report

    def normalize_record(self, record: Any, index: Optional[int] = None) -> Property:
        """
        Normalize one canonical record.

        Raises:
            NormalizationError: If the record is not a mapping or a value
                fails validation
        """
        if not isinstance(record, dict):
            raise NormalizationError(
                f"record is a {type(record).__name__}, not a mapping", record_index=index
            )

        try:
            return self._build_property(record)
        except (ValueError, TypeError, AttributeError, KeyError) as e:
            raise NormalizationError(f"{type(e).__name__}: {e}", record_index=index) from e

    def _field(self, record: Dict[str, Any], name: str) -> Any:
        rule = self.field_rules[name]
        value = first_present(record, rule.paths)
        return rule.default if value is None else value

    def _int_field(self, record: Dict[str, Any], name: str) -> Optional[int]:
        value = parse_digits(first_present(record, self.field_rules[name].paths))
        return self.field_rules[name].default if value is None else value

    def _text_field(self, record: Dict[str, Any], name: str) -> Optional[str]:
        value = text_value(first_present(record, self.field_rules[name].paths))
        return self.field_rules[name].default if value is None else value

    def _build_property(self, record: Dict[str, Any]) -> Property:
        identifier = self._text_field(record, "id") or synthesize_id(record)
        property_type = self._extract_property_type(record)
        city = self._text_field(record, "city")

        return Property(
            id=identifier,
            reference=self._text_field(record, "reference"),
            title=self._text_field(record, "title") or f"{property_type} in {city}",
            property_type=property_type,
            operation=Operation(
                kind=self._extract_operation(record),
                price=self._int_field(record, "price"),
                currency=(self._text_field(record, "currency") or "EUR").upper(),
            ),
            address=Address(
                street=self._text_field(record, "street"),
                city=city,
                province=self._text_field(record, "province"),
                postal_code=self._text_field(record, "postal_code"),
                coordinates=self._extract_coordinates(record),
            ),
            features=Features(
                rooms=self._int_field(record, "rooms"),
                bathrooms=self._int_field(record, "bathrooms"),
                area_constructed=self._int_field(record, "area_constructed"),
                usable_area=self._int_field(record, "usable_area"),
                floor=self._text_field(record, "floor"),
            ),
            descriptions=self._extract_descriptions(record),
            images=self._extract_images(record),
            amenities=self._extract_amenities(record),
            energy_rating=self._text_field(record, "energy_rating"),
            construction_year=self._int_field(record, "construction_year"),
            status=self._extract_status(record),
            published_at=parse_timestamp(self._field(record, "published_at")),
            modified_at=parse_timestamp(self._field(record, "modified_at")),
        )

    # -------------------------------------------------------------------------
    # Field extractors
    # -------------------------------------------------------------------------

    def _extract_property_type(self, record: Dict[str, Any]) -> str:
        raw = self._text_field(record, "property_type") or ""
        if raw in metadata.PROPERTY_TYPES:
            return raw
        return metadata.PROPERTY_TYPE_MAP.get(raw.lower(), self.field_rules["property_type"].default)

    def _extract_operation(self, record: Dict[str, Any]) -> OperationKind:
        raw = text_value(first_present(record, self.field_rules["operation"].paths))
        if raw:
            mapped = metadata.OPERATION_MAP.get(raw.lower())
            if mapped:
                return OperationKind(mapped)

        # Price block keyed by operation
        by_operation = resolve_path(record, "prices.byoperation")
        if isinstance(by_operation, dict) and "rent" in by_operation and "sale" not in by_operation:
            return OperationKind.RENT
        return OperationKind(self.field_rules["operation"].default)

    def _extract_status(self, record: Dict[str, Any]) -> PropertyStatus:
        raw = (self._text_field(record, "status") or "").lower()
        if raw in metadata.INACTIVE_STATUSES:
            return PropertyStatus.INACTIVE
        return PropertyStatus.ACTIVE

    def _extract_coordinates(self, record: Dict[str, Any]) -> Optional[Coordinates]:
        latitude = parse_float(first_present(record, self.field_rules["latitude"].paths))
        longitude = parse_float(first_present(record, self.field_rules["longitude"].paths))
        if latitude is None or longitude is None:
            return None
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            return None
        return Coordinates(latitude=latitude, longitude=longitude)

    def _extract_images(self, record: Dict[str, Any]) -> List[Image]:
        pictures: List[Any] = []
        for media in as_list(first_container(record, metadata.MULTIMEDIA_PATHS)):
            if not isinstance(media, dict):
                continue
            for picture in as_list(media.get("pictures")):
                # <pictures><picture>..</picture></pictures> nests one more level
                if isinstance(picture, dict) and "picture" in picture:
                    pictures.extend(as_list(picture["picture"]))
                else:
                    pictures.append(picture)

        if not pictures:
            pictures = as_list(first_container(record, metadata.FLAT_IMAGE_PATHS))

        images: List[Image] = []
        for index, picture in enumerate(pictures):
            if isinstance(picture, dict):
                url = text_value(first_present(picture, metadata.PICTURE_URL_PATHS))
                position = parse_digits(first_present(picture, ("position",)))
                tag = text_value(first_present(picture, metadata.PICTURE_TAG_PATHS))
                width = parse_digits(first_present(picture, ("width",)))
                height = parse_digits(first_present(picture, ("height",)))
                size_bytes = parse_digits(first_present(picture, metadata.PICTURE_SIZE_PATHS))
            else:
                url = text_value(picture)
                position = tag = width = height = size_bytes = None

            if not url:
                continue

            images.append(Image(
                url=url,
                position=index + 1 if position is None else position,
                tag=tag,
                width=width,
                height=height,
                size_bytes=size_bytes,
            ))

        images.sort(key=lambda image: image.position)
        return images

    def _extract_descriptions(self, record: Dict[str, Any]) -> List[Description]:
        entries: List[Any] = []
        for block in as_list(first_container(record, metadata.COMMENT_PATHS)):
            if isinstance(block, dict) and "adcomments" in block:
                entries.extend(as_list(block["adcomments"]))
            else:
                entries.append(block)

        descriptions: List[Description] = []
        for entry in entries:
            if isinstance(entry, dict):
                text = text_value(first_present(entry, metadata.COMMENT_TEXT_PATHS))
                code = text_value(first_present(entry, ("language", "lang")))
            else:
                text, code = text_value(entry), None
            if not text:
                continue
            language = metadata.DESCRIPTION_LANGUAGES.get(code, code) if code else None
            descriptions.append(Description(language=language, text=text))

        if not descriptions:
            text = text_value(first_present(record, metadata.FLAT_DESCRIPTION_PATHS))
            if text:
                descriptions.append(Description(language=None, text=text))

        return descriptions

    def _extract_amenities(self, record: Dict[str, Any]) -> List[str]:
        amenities = []
        for flag, name in metadata.AMENITY_FLAGS.items():
            value = first_present(record, [f"{base}.{flag}" for base in metadata.HOUSING_PATHS])
            if parse_bool(value):
                amenities.append(name)
        return amenities
