"""Value converters used by transformation mapping rules.

Every converter takes the raw value plus the rule's transform_params and
returns a string, raising ParseError when the value cannot be interpreted.
"""
import re
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sportsrecon.core.exceptions import ParseError
from sportsrecon.services.reconciliation.utils.name_normalizer import (
    normalize_height, normalize_text, normalize_whitespace, parse_number,
)

LBS_PER_KG = 2.20462262

DEFAULT_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%a, %b %d, %Y",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
)


def _format_number(value: float, precision: int) -> str:
    if precision <= 0:
        return str(int(round(value)))
    return str(round(value, precision))


def _require_number(value: Any, expected: str) -> float:
    number = parse_number(value)
    if number is None:
        raise ParseError(value, expected)
    return number


def inches_to_feet_inches(value: Any, params: Dict[str, Any]) -> str:
    """74 → '6-2' (separator configurable)."""
    inches = normalize_height(value)
    if inches is None:
        raise ParseError(value, "height in inches")
    separator = params.get("separator", "-")
    return f"{inches // 12}{separator}{inches % 12}"


def feet_inches_to_inches(value: Any, params: Dict[str, Any]) -> str:
    """'6-2' → '74'."""
    inches = normalize_height(value)
    if inches is None:
        raise ParseError(value, "feet-inches height")
    return str(inches)


def cm_to_inches(value: Any, params: Dict[str, Any]) -> str:
    cm = _require_number(re.sub(r"\s*cm$", "", normalize_whitespace(value).lower()), "centimetres")
    return _format_number(cm / 2.54, int(params.get("precision", 0)))


def lbs_to_kg(value: Any, params: Dict[str, Any]) -> str:
    lbs = _require_number(value, "pounds")
    return _format_number(lbs / LBS_PER_KG, int(params.get("precision", 0)))


def kg_to_lbs(value: Any, params: Dict[str, Any]) -> str:
    kg = _require_number(value, "kilograms")
    return _format_number(kg * LBS_PER_KG, int(params.get("precision", 0)))


def date_format(value: Any, params: Dict[str, Any]) -> str:
    """Reformat a date string from any known input format to output_format."""
    text = normalize_whitespace(value)
    formats = params.get("input_formats") or DEFAULT_DATE_FORMATS
    output_format = params.get("output_format", "%Y-%m-%d")
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).strftime(output_format)
        except ValueError:
            continue
    raise ParseError(value, "date")


def custom_transform(value: Any, params: Dict[str, Any]) -> str:
    """
    Operator-defined transform.

    Supported params:
        map: {raw value: replacement}, matched case-insensitively
        pattern / replacement: regular expression substitution
    """
    text = normalize_whitespace(value)
    lookup: Optional[Dict[str, Any]] = params.get("map")
    if lookup:
        folded = {normalize_text(k): v for k, v in lookup.items()}
        key = normalize_text(text)
        if key in folded:
            return str(folded[key])
    pattern = params.get("pattern")
    if pattern:
        try:
            return re.sub(pattern, params.get("replacement", ""), text)
        except re.error as e:
            raise ParseError(pattern, f"regular expression ({e})") from e
    if lookup:
        return text
    raise ParseError(params, "custom transform parameters")


CONVERTERS: Dict[str, Callable[[Any, Dict[str, Any]], str]] = {
    "inchesToFeetInches": inches_to_feet_inches,
    "feetInchesToInches": feet_inches_to_inches,
    "cmToInches": cm_to_inches,
    "lbsToKg": lbs_to_kg,
    "kgToLbs": kg_to_lbs,
    "dateFormat": date_format,
    "custom": custom_transform,
}


def apply_transform(name: str, value: Any, params: Optional[Dict[str, Any]] = None) -> str:
    """Apply a named converter; unknown names raise ParseError."""
    converter = CONVERTERS.get(name)
    if converter is None:
        raise ParseError(name, "known transform function")
    return converter(value, params or {})
