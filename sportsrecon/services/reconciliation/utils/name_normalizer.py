"""Normalization utilities for matching players, opponents and raw field values.

Handles common variations between scraped sites and authoritative sources:
- Suffixes: "Jr.", "Sr.", "II", "III", "IV"
- Punctuation and curly quotes: "D’Andre O’Neal" → "dandre oneal"
- Accents: "José Peña" → "jose pena"
- Case and extra spaces: "KYLE  LOWRY" → "kyle lowry"
- Heights: "6-2", "6' 2\"", "6 ft 2 in", "74", "188 cm" → inches
- Dates: "2024-11-02T19:00:00Z" → "2024-11-02"
"""
import re
import unicodedata
from typing import Any, Optional


# Common name suffixes that should be removed for comparison
SUFFIXES = {'jr', 'sr', 'ii', 'iii', 'iv'}

_QUOTES = str.maketrans({
    '‘': "'", '’': "'", '‛': "'", '′': "'",
    '“': '"', '”': '"', '″': '"',
})

_FEET_INCHES = re.compile(r"^(\d+)\s*(?:'|ft\.?|feet|-)\s*(\d{1,2}(?:\.\d+)?)?\s*(?:\"|''|in\.?|inches)?$")
_CENTIMETRES = re.compile(r"^(\d+(?:\.\d+)?)\s*cm$")
_PLAIN_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")


def normalize_whitespace(value: Any) -> str:
    """Trim and collapse internal whitespace; None becomes an empty string."""
    if value is None:
        return ""
    return ' '.join(str(value).split())


def normalize_text(value: Any, case_sensitive: bool = False) -> str:
    """
    Canonical form for rule value comparison.

    Applies NFC normalization, straightens curly quotes, collapses whitespace
    and lowercases unless case_sensitive.
    """
    text = unicodedata.normalize('NFC', normalize_whitespace(value)).translate(_QUOTES)
    return text if case_sensitive else text.lower()


def normalize(name: str) -> str:
    """
    Normalize a person name into an identity key.

    Steps:
    1. Straighten quotes and remove suffixes (Jr, Sr, II, III, IV)
    2. Remove accents
    3. Lowercase
    4. Remove punctuation (keep letters, numbers, spaces)
    5. Collapse whitespace

    Args:
        name: The name to normalize

    Returns:
        Normalized name string

    Examples:
        >>> normalize("P.J. Tucker")
        'pj tucker'
        >>> normalize("Bob Smith Jr.")
        'bob smith'
        >>> normalize("José  Peña")
        'jose pena'
    """
    if not name:
        return ""

    name = str(name).translate(_QUOTES)
    name = _remove_suffixes(name)
    name = _normalize_unicode(name)
    name = name.lower()
    name = re.sub(r'[^\w\s]', '', name)
    return ' '.join(name.split())


def _remove_suffixes(name: str) -> str:
    """Remove a trailing generational suffix, with or without a comma before it."""
    parts = name.replace(',', ' ').split()
    if len(parts) > 1 and parts[-1].lower().replace('.', '') in SUFFIXES:
        return ' '.join(parts[:-1])
    return name


def extract_suffix(name: str) -> str:
    """
    Extract the generational suffix from a name if present.

    Examples:
        >>> extract_suffix("Bob Smith Jr.")
        'jr'
        >>> extract_suffix("Bob Smith")
        ''
    """
    if not name:
        return ""
    parts = name.replace(',', ' ').split()
    if parts and parts[-1].lower().replace('.', '') in SUFFIXES:
        return parts[-1].lower().replace('.', '')
    return ""


def _normalize_unicode(name: str) -> str:
    """Remove accents and diacritics ('č' → 'c')."""
    normalized = unicodedata.normalize('NFD', name)
    return ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')


def normalize_team_name(team_name: str) -> str:
    """
    Normalize opponent / team names for comparison.

    Strips accents, punctuation, leading "vs"/"at"/"@" markers and rankings
    such as "#12", so "at #12 St. John's" and "St Johns" compare equal.
    """
    if not team_name:
        return ""

    normalized = _normalize_unicode(str(team_name).translate(_QUOTES)).lower()
    normalized = re.sub(r'^(vs\.?|at|@)\s+', '', normalized.strip())
    normalized = re.sub(r'#\d+\s*', '', normalized)
    normalized = re.sub(r'[^\w\s]', '', normalized)
    return ' '.join(normalized.split())


def are_names_equal(name1: str, name2: str, fuzzy: bool = False, threshold: int = 90) -> bool:
    """
    Check if two names are equal after normalization.

    Args:
        name1: First name
        name2: Second name
        fuzzy: If True, also try fuzzy matching as fallback
        threshold: Minimum rapidfuzz WRatio score for a fuzzy match

    Returns:
        True if names match
    """
    norm1 = normalize(name1)
    norm2 = normalize(name2)

    if norm1 == norm2:
        return True

    if fuzzy and norm1 and norm2:
        from rapidfuzz import fuzz
        return fuzz.WRatio(norm1, norm2) >= threshold

    return False


def normalize_date_key(value: Any) -> str:
    """Date part of an ISO-ish timestamp: '2024-11-02T19:00:00Z' → '2024-11-02'."""
    if value is None:
        return ""
    if hasattr(value, 'isoformat'):
        value = value.isoformat()
    return str(value).split('T')[0].strip()


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric value, tolerating units like 'lbs' and thousands separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = normalize_whitespace(value).lower().replace(',', '')
    text = re.sub(r'\s*(lbs?|pounds|kg)\.?$', '', text)
    if _PLAIN_NUMBER.match(text):
        return float(text)
    return None


def normalize_height(value: Any) -> Optional[int]:
    """
    Convert a height in any common notation to whole inches.

    Examples:
        >>> normalize_height("6-2")
        74
        >>> normalize_height("6' 2\\"")
        74
        >>> normalize_height("74")
        74
        >>> normalize_height("188 cm")
        74
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(round(value))

    text = normalize_whitespace(value).translate(_QUOTES).lower()
    if not text:
        return None
    if _PLAIN_NUMBER.match(text):
        return int(round(float(text)))

    match = _CENTIMETRES.match(text)
    if match:
        return int(round(float(match.group(1)) / 2.54))

    match = _FEET_INCHES.match(text)
    if match:
        feet = int(match.group(1))
        inches = float(match.group(2)) if match.group(2) else 0.0
        return int(round(feet * 12 + inches))

    return None
