"""Line-item deduplication

OCR regularly registers the same invoice line twice (wrapped rows, repeated
table headers). Items are fingerprinted on normalized description, unit
price, quantity and total; the first occurrence wins.
"""

import re
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from invoicebook.models.decimal_wire import quantize_fixed
from invoicebook.models.invoice import LineItem
from .totals import total_ht

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_REFERENCE_PREFIX = re.compile(r"^(si|l|fi|ost|sl)")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass
class DuplicateItem:
    """A line item dropped because an earlier item has the same fingerprint"""
    index: int
    duplicate_of: int
    fingerprint: str
    item: LineItem


@dataclass
class DeduplicationResult:
    """Outcome of a deduplication pass"""
    unique_items: List[LineItem]
    duplicates: List[DuplicateItem] = field(default_factory=list)
    total_ht_before: Decimal = Decimal("0")
    total_ht_after: Decimal = Decimal("0")

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicates)

    @property
    def removed_count(self) -> int:
        return len(self.duplicates)


def normalize_description(text: Optional[str]) -> str:
    """Trim, lowercase and collapse internal whitespace"""
    return _WHITESPACE.sub(" ", (text or "").strip().lower())


def normalize_reference(reference: Optional[str]) -> str:
    """Supplier product codes: drop spaces, known noise prefixes and punctuation"""
    ref = _WHITESPACE.sub("", (reference or "").strip().lower())
    ref = _REFERENCE_PREFIX.sub("", ref)
    return _NON_ALNUM.sub("", ref)


def _fixed(value: Optional[Decimal], default: Decimal, places: str) -> str:
    value = default if value is None else value
    return format(quantize_fixed(value, Decimal(places)), "f")


def item_fingerprint(item: LineItem) -> Optional[str]:
    """
    Identity key of a line item, or None when the item carries no identity.

    The reference is not part of the key: the same product line shows up
    with differently prefixed or spaced references. It is only used in
    place of the description when the description is empty.
    """
    identity = normalize_description(item.description)
    if not identity:
        reference = normalize_reference(item.reference)
        if not reference:
            return None
        identity = f"ref:{reference}"

    return "|".join([
        identity,
        _fixed(item.unit_price, Decimal("0"), "0.01"),
        _fixed(item.quantity, Decimal("1"), "0.001"),
        _fixed(item.total_price, Decimal("0"), "0.01"),
    ])


def deduplicate_items(items: Sequence[LineItem]) -> DeduplicationResult:
    """
    Drop repeated line items, keeping first occurrences in their original order.

    Never fails; with no duplicates the unique list equals the input.
    """
    seen: Dict[str, int] = {}
    unique_items: List[LineItem] = []
    duplicates: List[DuplicateItem] = []

    for index, item in enumerate(items):
        key = item_fingerprint(item)
        if key is not None and key in seen:
            duplicates.append(DuplicateItem(
                index=index,
                duplicate_of=seen[key],
                fingerprint=key,
                item=item,
            ))
            logger.info(
                f"Duplicate line item at index {index} (duplicate of {seen[key]}): "
                f"{item.description!r}"
            )
            continue
        if key is not None:
            seen[key] = index
        unique_items.append(item)

    return DeduplicationResult(
        unique_items=unique_items,
        duplicates=duplicates,
        total_ht_before=total_ht(items),
        total_ht_after=total_ht(unique_items),
    )


def find_similar_descriptions(items: Sequence[LineItem]) -> Dict[str, List[int]]:
    """
    Group indices of items sharing a normalized description.

    Only groups of two or more are returned. Used to surface lines that look
    alike but differ in price, quantity or reference, which the fingerprint
    deliberately keeps apart.
    """
    groups: Dict[str, List[int]] = {}
    for index, item in enumerate(items):
        desc = normalize_description(item.description)
        if desc:
            groups.setdefault(desc, []).append(index)
    return {desc: indices for desc, indices in groups.items() if len(indices) > 1}
