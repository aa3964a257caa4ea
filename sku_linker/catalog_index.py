"""
Run-scoped catalog code index and match scoring
"""
import logging
from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .extraction import is_numeric
from .models import ExtractedCode, MatchResult, Product, MATCH_EXACT, MATCH_FUZZY, MATCH_VARIANT

logger = logging.getLogger(__name__)

VARIANT_FACTOR = 0.9
CONTAINMENT_FACTOR = 0.7
EDIT_DISTANCE_FACTOR = 0.6
MIN_SIMILARITY = 0.8


def normalize_code(code: str) -> str:
    return (code or '').strip().lower()


def strip_leading_zeros(code: str) -> str:
    """Remove leading zeros from a numeric code ("000" becomes "0")."""
    if is_numeric(code):
        return code.lstrip('0') or '0'
    return code


def code_variants(code: str) -> Set[str]:
    """Normalized code plus its zero-padding add/remove variants."""
    normalized = normalize_code(code)
    variants = {normalized}

    if is_numeric(normalized):
        if len(normalized) == 3:
            variants.update({'0' + normalized, '00' + normalized, '000' + normalized})
        if len(normalized) == 4:
            variants.update({'0' + normalized, '00' + normalized})
        if len(normalized) == 5:
            variants.add('0' + normalized)
        variants.add(strip_leading_zeros(normalized))

    return variants


def levenshtein_distance(a: str, b: str) -> int:
    """Character-level edit distance (insert, delete, substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / longest


def _round(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def score_match(product_code: str, codes: Sequence[ExtractedCode]) -> Tuple[int, Optional[ExtractedCode], Optional[str]]:
    """
    Score extracted codes against one catalog code.

    Args:
        product_code: Catalog identifier of the product
        codes: Extracted codes to compare

    Returns:
        (score, best code, match type); (0, None, None) when nothing scores
    """
    target = normalize_code(product_code)
    if not target or not codes:
        return 0, None, None

    best_score = 0.0
    best_code = None
    best_type = None

    for code in codes:
        value = normalize_code(code.value)
        if not value:
            continue

        if value == target:
            candidate, match_type = float(code.confidence), MATCH_EXACT
        elif strip_leading_zeros(value) == strip_leading_zeros(target):
            candidate, match_type = code.confidence * VARIANT_FACTOR, MATCH_VARIANT
        elif value in target or target in value:
            ratio = min(len(value), len(target)) / max(len(value), len(target))
            candidate, match_type = code.confidence * CONTAINMENT_FACTOR * ratio, MATCH_FUZZY
        else:
            sim = similarity(value, target)
            if sim <= MIN_SIMILARITY:
                continue
            candidate, match_type = code.confidence * EDIT_DISTANCE_FACTOR * sim, MATCH_FUZZY

        if candidate > best_score:
            best_score, best_code, best_type = candidate, code, match_type

    return _round(best_score), best_code, best_type


def score(product_code: str, codes: Sequence[ExtractedCode]) -> int:
    """Best integer score of the extracted codes against a catalog code."""
    return score_match(product_code, codes)[0]


class CatalogIndex:
    """
    Normalized code variant -> product ids, built once per scan run.

    The index is owned by the run that built it and is not shared.
    """

    def __init__(self, products: Iterable[Product] = ()):
        self._codes: Dict[str, Set[str]] = defaultdict(set)
        self._products: Dict[str, Product] = {}
        self.rebuild(products)

    @classmethod
    def build(cls, products: Iterable[Product]) -> 'CatalogIndex':
        return cls(products)

    def rebuild(self, products: Iterable[Product]) -> None:
        """Replace all indexed state with the given products."""
        self._codes = defaultdict(set)
        self._products = {}

        for product in products:
            if not product.code or not normalize_code(product.code):
                continue
            self._products[product.id] = product
            for variant in code_variants(product.code):
                self._codes[variant].add(product.id)

        logger.info(f"Catalog index built: {len(self._products)} products, {len(self._codes)} code variants")

    def __len__(self) -> int:
        return len(self._products)

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def lookup(self, code: str) -> List[str]:
        """Product ids indexed under the code or its zero-stripped form."""
        normalized = normalize_code(code)
        ids = set(self._codes.get(normalized, ()))
        stripped = strip_leading_zeros(normalized)
        if stripped != normalized:
            ids.update(self._codes.get(stripped, ()))
        return sorted(ids)

    def find_best_match(self, codes: Sequence[ExtractedCode]) -> Tuple[Optional[MatchResult], int]:
        """
        Best scoring product for an image's extracted codes.

        Codes are tried in the given order (descending confidence). A later
        match replaces the current best only when it scores strictly higher.

        Returns:
            (best MatchResult or None, number of codes attempted)
        """
        best = None
        attempts = 0

        for code in codes:
            attempts += 1
            for product_id in self.lookup(code.value):
                product = self._products[product_id]
                value, matched, match_type = score_match(product.code, [code])
                if matched is None:
                    continue
                if best is None or value > best.score:
                    best = MatchResult(
                        product_id=product_id,
                        product_code=product.code,
                        extracted_code=matched,
                        score=value,
                        match_type=match_type,
                    )

        return best, attempts
