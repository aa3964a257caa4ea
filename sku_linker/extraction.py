"""
SKU extraction from image filenames

Each strategy is a plain function ``(clean_name, full_path, found) -> list``
that proposes ExtractedCode values. ``extract_codes`` runs them in order and
merges the results, keeping the highest confidence seen per value.
"""
import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from .models import (
    ExtractedCode,
    PROVENANCE_EXACT,
    PROVENANCE_FUZZY,
    PROVENANCE_MULTI,
    PROVENANCE_PATH,
    PROVENANCE_PATTERN,
    PROVENANCE_ZERO_PADDED,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('jpg', 'jpeg', 'png', 'gif', 'webp', 'bmp', 'svg', 'tif', 'tiff')

MIN_CODE_LENGTH = 3
MAX_CODE_LENGTH = 8

_EXTENSION_RE = re.compile(r'\.(jpe?g|png|gif|webp|bmp|svg|tiff?)$', re.IGNORECASE)
_CODE_RE = re.compile(r'^\d{3,8}$', re.ASCII)
_MULTI_RE = re.compile(r'^\d{3,8}(?:[._-]\d{3,8})+$', re.ASCII)
_DIGIT_RUN_RE = re.compile(r'(?<!\d)\d{3,8}(?!\d)', re.ASCII)
_DIGITS_RE = re.compile(r'[0-9]+')

LABELED_PATTERNS = [
    re.compile(r'(?:SKU|sku|ITEM|item|PRODUCT|product|PROD|prod)[_\-\s]?(\d{3,8})(?!\d)', re.ASCII),
    re.compile(r'[A-Z]{2,}[_\-]?(\d{3,8})(?!\d)', re.ASCII),
    re.compile(r'(?<!\d)(\d{3,8})[_\-][A-Za-z]+', re.ASCII),
    re.compile(r'\[(\d{3,8})\]', re.ASCII),
    re.compile(r'\((\d{3,8})\)', re.ASCII),
    re.compile(r'^(\d{3,8})[_\-]', re.ASCII),
    re.compile(r'[_\-](\d{3,8})$', re.ASCII),
]

MULTI_START_CONFIDENCE = 90
MULTI_STEP = 5
MULTI_FLOOR = 70
LABELED_CONFIDENCE = 60

Strategy = Callable[[str, Optional[str], Sequence[ExtractedCode]], List[ExtractedCode]]


def clean_filename(filename: str) -> str:
    """Strip a trailing image extension and surrounding whitespace."""
    return _EXTENSION_RE.sub('', (filename or '').strip()).strip()


def is_image_filename(filename: str) -> bool:
    return bool(filename) and bool(_EXTENSION_RE.search(filename))


def is_code(value: str) -> bool:
    return bool(_CODE_RE.match(value or ''))


def is_numeric(value: str) -> bool:
    """True for a non-empty run of ASCII digits."""
    return bool(_DIGITS_RE.fullmatch(value or ''))


def extract_exact(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """
    Whole name is a 3-8 digit code.

    Also proposes the 6-digit zero-padded form of a 5-digit code and the
    zero-trimmed form of a code with leading zeros.
    """
    if not is_code(clean_name):
        return []

    codes = [ExtractedCode(clean_name, 100, PROVENANCE_EXACT)]

    if len(clean_name) == 5 and not clean_name.startswith('0'):
        codes.append(ExtractedCode('0' + clean_name, 95, PROVENANCE_ZERO_PADDED))

    if clean_name.startswith('0') and len(clean_name) > MIN_CODE_LENGTH:
        trimmed = clean_name.lstrip('0')
        if len(trimmed) >= MIN_CODE_LENGTH:
            codes.append(ExtractedCode(trimmed, 95, PROVENANCE_ZERO_PADDED))

    return codes


def extract_multi(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Several codes joined by '.', '_' or '-' (e.g. 319027.319026)."""
    if not _MULTI_RE.match(clean_name):
        return []

    codes = []
    seen = set()
    for run in re.split(r'[._-]', clean_name):
        if run in seen:
            continue
        confidence = max(MULTI_START_CONFIDENCE - len(seen) * MULTI_STEP, MULTI_FLOOR)
        seen.add(run)
        codes.append(ExtractedCode(run, confidence, PROVENANCE_MULTI))
    return codes


def extract_numeric_anywhere(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Any 3-8 digit run; runs at the start of the name score highest."""
    runs = _DIGIT_RUN_RE.findall(clean_name)
    codes = []
    for run in runs:
        if clean_name.startswith(run):
            confidence = 85
        elif len(runs) == 1:
            confidence = 80
        elif clean_name.endswith(run):
            confidence = 75
        else:
            confidence = 70
        codes.append(ExtractedCode(run, confidence, PROVENANCE_PATTERN))
    return codes


def extract_path_segments(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Codes carried by parent folder names."""
    if not full_path or '/' not in full_path:
        return []

    folders = [part for part in full_path.split('/')[:-1] if part]
    codes = []
    for folder in folders:
        if is_code(folder):
            codes.append(ExtractedCode(folder, 70, PROVENANCE_PATH))
            continue
        for run in _DIGIT_RUN_RE.findall(folder):
            codes.append(ExtractedCode(run, 65, PROVENANCE_PATH))
    return codes


def extract_labeled(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Decorated codes: SKU-123456, [123456], (123456), 123456_front ..."""
    codes = []
    for pattern in LABELED_PATTERNS:
        for match in pattern.finditer(clean_name):
            codes.append(ExtractedCode(match.group(1), LABELED_CONFIDENCE, PROVENANCE_PATTERN))
    return codes


def zero_padding_variants(code: str) -> List[Tuple[str, int]]:
    """
    Zero-padding variants of a numeric code with their confidences.

    Short codes are padded towards the usual 6-digit SKU width; codes with
    leading zeros are trimmed one zero at a time.
    """
    if not is_numeric(code):
        return []

    variants = []
    if len(code) == 3:
        variants += [('0' + code, 50), ('00' + code, 45), ('000' + code, 40)]
    if len(code) == 4 and not code.startswith('0'):
        variants += [('0' + code, 50), ('00' + code, 45)]
    if len(code) == 5 and not code.startswith('0'):
        variants.append(('0' + code, 50))

    trimmed = code
    while trimmed.startswith('0') and len(trimmed) > 1:
        trimmed = trimmed[1:]
        if MIN_CODE_LENGTH <= len(trimmed) <= MAX_CODE_LENGTH:
            variants.append((trimmed, 50))

    return variants


def extract_fuzzy_variants(clean_name: str, full_path: Optional[str], found: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Zero-padding add/remove variants for every code found so far."""
    codes = []
    for value in dict.fromkeys(code.value for code in found):
        for variant, confidence in zero_padding_variants(value):
            codes.append(ExtractedCode(variant, confidence, PROVENANCE_FUZZY))
    return codes


DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = [
    ('exact', extract_exact),
    ('multi', extract_multi),
    ('numeric', extract_numeric_anywhere),
    ('path', extract_path_segments),
    ('labeled', extract_labeled),
    ('fuzzy', extract_fuzzy_variants),
]


def merge_codes(codes: Sequence[ExtractedCode]) -> List[ExtractedCode]:
    """Unique by value, highest confidence kept, sorted by confidence."""
    best = {}
    for code in codes:
        current = best.get(code.value)
        if current is None or code.confidence > current.confidence:
            best[code.value] = code
    # sorted() is stable, so ties stay in discovery order
    return sorted(best.values(), key=lambda c: c.confidence, reverse=True)


def extract_codes(filename: str, full_path: Optional[str] = None,
                  strategies: Sequence[Tuple[str, Strategy]] = None) -> List[ExtractedCode]:
    """
    Extract candidate SKUs from an image filename.

    Args:
        filename: Image filename (with or without extension)
        full_path: Optional storage path, used for folder-based codes
        strategies: Ordered (name, function) pairs; defaults to DEFAULT_STRATEGIES

    Returns:
        Unique ExtractedCode list sorted by descending confidence
    """
    if not filename or not isinstance(filename, str):
        return []

    clean_name = clean_filename(filename)
    found: List[ExtractedCode] = []

    for name, strategy in (strategies or DEFAULT_STRATEGIES):
        proposed = strategy(clean_name, full_path, merge_codes(found))
        if proposed:
            logger.debug(f"{name}: {filename} -> {[c.value for c in proposed]}")
        found.extend(proposed)

    return merge_codes(found)
