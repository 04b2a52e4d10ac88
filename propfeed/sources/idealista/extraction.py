"""
Generic path resolution over the canonical feed tree.

The canonical tree is made of dicts with lowercase keys, lists and scalar
leaves. A path is a dotted string of keys ("prices.byoperation.sale.price").
Lists met on the way are unwrapped to their first element, so a field that
is sometimes a singleton list and sometimes a scalar resolves the same way.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

# Key holding element text when an XML element also has attributes or children
TEXT_KEY = "#text"

_NON_DIGITS = re.compile(r"\D")
_TRUE_VALUES = {"true", "1", "yes", "y", "si", "sí"}


def unwrap(value: Any) -> Any:
    """
    Reduce a value to a single item.

    Lists are replaced by their first element (repeatedly); an empty list
    becomes None. Anything else is returned as is.
    """
    while isinstance(value, list):
        if not value:
            return None
        value = value[0]
    return value


def as_list(value: Any) -> List[Any]:
    """Wrap a scalar or mapping in a list; None becomes an empty list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def resolve_path(tree: Any, path: str) -> Any:
    """
    Follow a dotted path through the tree.

    Intermediate lists are unwrapped; the final value is returned unchanged
    so callers can still see a list of records.

    Returns:
        The value at the path, or None if any step is missing
    """
    current = tree
    for segment in path.split("."):
        current = unwrap(current)
        if not isinstance(current, dict):
            return None
        current = current.get(segment)
        if current is None:
            return None
    return current


def resolve_container(tree: Any, path: str) -> Any:
    """
    Follow a dotted container path through mappings only.

    Keys match case-insensitively. Lists are never unwrapped, so in
    {"properties": [record, ...]} the path "properties.property" does not
    descend into the first record.

    Returns:
        The value at the path, or None if any step is missing or not a mapping
    """
    current = tree
    for segment in path.split("."):
        if not isinstance(current, dict):
            return None
        current = next(
            (value for key, value in current.items() if str(key).strip().lower() == segment),
            None,
        )
        if current is None:
            return None
    return current


def scalar(value: Any) -> Any:
    """
    Unwrap a value to a scalar leaf.

    A mapping carrying element text yields the text; any other mapping is a
    container, not a scalar, and yields None.
    """
    value = unwrap(value)
    if isinstance(value, dict):
        return value.get(TEXT_KEY)
    return value


def first_present(tree: Any, paths: Iterable[str]) -> Any:
    """
    Return the first non-empty scalar found along the candidate paths.

    Args:
        tree: Record (or sub-tree) to search
        paths: Candidate paths, in priority order

    Returns:
        Scalar value, or None if no path yields one
    """
    for path in paths:
        value = scalar(resolve_path(tree, path))
        if not is_empty(value):
            return value
    return None


def first_container(tree: Any, paths: Iterable[str]) -> Any:
    """Return the first non-empty value (mapping or list included) along the paths."""
    for path in paths:
        value = resolve_path(tree, path)
        if not is_empty(value):
            return value
    return None


def parse_digits(value: Any) -> Optional[int]:
    """
    Parse a non-negative integer by keeping only the digits.

    "250.000 €" -> 250000. Native numbers are truncated; negative numbers
    and digit-less strings yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return int(value) if value >= 0 else None
    digits = _NON_DIGITS.sub("", str(value))
    return int(digits) if digits else None


def parse_float(value: Any) -> Optional[float]:
    """Parse a float, accepting a decimal comma. Returns None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(str(value).strip().replace(",", "."))
    except ValueError:
        return None
    return result if math.isfinite(result) else None


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a feed timestamp into an aware UTC datetime.

    All-digit values of 12 or more digits are epoch milliseconds, shorter
    ones epoch seconds. Other strings are read as ISO-8601; naive values are
    taken as UTC.

    Returns:
        datetime in UTC, or None when the value cannot be parsed
    """
    if value is None or isinstance(value, bool):
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        if text.isdigit():
            number = int(text)
            if len(text) >= 12:
                return datetime.fromtimestamp(number / 1000, tz=timezone.utc)
            return datetime.fromtimestamp(number, tz=timezone.utc)

        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def text_value(value: Any) -> Optional[str]:
    """Scalar as stripped text, or None."""
    value = scalar(value)
    if is_empty(value):
        return None
    return str(value).strip()
