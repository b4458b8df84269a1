"""Pro-rata redistribution of line items across ledger allocations

Allocations carry user-entered HT amounts. Their ``item_indices`` go stale
whenever the invoice's item list changes, so they are recomputed here from
the amounts alone.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from invoicebook.config import settings
from invoicebook.exceptions import MalformedAllocationError
from invoicebook.models.invoice import Allocation, LineItem
from invoicebook.models.decimal_wire import quantize_money
from .totals import item_ht, ZERO

logger = logging.getLogger(__name__)


@dataclass
class AllocationAssignment:
    """Recomputed item indices for one allocation"""
    position: int
    allocation_id: Optional[str]
    account_code: str
    item_indices: List[int]
    share: Decimal
    target_ht: Decimal
    assigned_ht: Decimal

    def to_dict(self) -> dict:
        return {
            "allocation_id": self.allocation_id,
            "account_code": self.account_code,
            "item_indices": list(self.item_indices),
            "share": str(self.share),
            "target_ht": str(quantize_money(self.target_ht)),
            "assigned_ht": str(quantize_money(self.assigned_ht)),
        }


@dataclass
class AllocationCoverage:
    """How the stored allocations cover an invoice's items"""
    item_count: int
    allocated_indices: List[int] = field(default_factory=list)
    unallocated_indices: List[int] = field(default_factory=list)
    duplicated_indices: List[int] = field(default_factory=list)
    out_of_range_indices: List[int] = field(default_factory=list)
    allocations_with_items: int = 0
    allocations_without_items: int = 0

    @property
    def is_complete(self) -> bool:
        """Every item allocated exactly once and no dangling index"""
        return (
            not self.unallocated_indices
            and not self.duplicated_indices
            and not self.out_of_range_indices
        )

    def to_dict(self) -> dict:
        return {
            "item_count": self.item_count,
            "allocated_indices": self.allocated_indices,
            "unallocated_indices": self.unallocated_indices,
            "duplicated_indices": self.duplicated_indices,
            "out_of_range_indices": self.out_of_range_indices,
            "allocations_with_items": self.allocations_with_items,
            "allocations_without_items": self.allocations_without_items,
            "is_complete": self.is_complete,
        }


def validate_allocation_amounts(allocations: Sequence[Allocation]) -> List[Decimal]:
    """Return the allocation amounts or raise MalformedAllocationError"""
    amounts = []
    for position, allocation in enumerate(allocations):
        amount = allocation.amount
        if not isinstance(amount, Decimal) or not amount.is_finite():
            raise MalformedAllocationError(
                f"Allocation #{position + 1} ({allocation.account_code}) has a "
                f"non-numeric amount: {amount!r}",
                allocation_id=allocation.id,
            )
        amounts.append(amount)
    return amounts


def reconcile_allocations(
    items: Sequence[LineItem],
    allocations: Sequence[Allocation],
    stop_ratio: Optional[Decimal] = None,
) -> List[AllocationAssignment]:
    """
    Assign every item index to exactly one allocation, pro rata to amounts.

    Allocations are processed in the given order (creation order). Each one
    greedily takes items from the remaining pool, in index order, while they
    fit under its HT target; an allocation with a positive share always gets
    at least one item. It stops once it reaches ``stop_ratio`` of its target.
    The last allocation takes whatever is left, so no item is ever dropped.

    Args:
        items: Deduplicated line items
        allocations: Allocations in creation order
        stop_ratio: Fraction of the target at which an allocation is full

    Returns:
        One assignment per allocation, indices sorted ascending. Empty when
        there are no allocations.

    Raises:
        MalformedAllocationError: an allocation amount is missing or not finite.
            Raised before any assignment is computed.
    """
    if not allocations:
        return []

    amounts = validate_allocation_amounts(allocations)
    if stop_ratio is None:
        stop_ratio = Decimal(str(settings.ALLOCATION_STOP_RATIO))

    item_hts = [item_ht(item) for item in items]
    total_items_ht = sum(item_hts, ZERO)
    total_allocated = sum(amounts, ZERO)

    pool: Dict[int, Decimal] = dict(enumerate(item_hts))
    last = len(allocations) - 1
    assignments: List[AllocationAssignment] = []

    for position, (allocation, amount) in enumerate(zip(allocations, amounts)):
        share = amount / total_allocated if total_allocated else ZERO
        target_ht = total_items_ht * share
        indices: List[int] = []
        current_ht = ZERO

        if position == last:
            indices = list(pool)
            current_ht = sum(pool.values(), ZERO)
            pool.clear()
        else:
            for index, ht in list(pool.items()):
                if current_ht + ht <= target_ht or (not indices and share > 0):
                    indices.append(index)
                    current_ht += ht
                    del pool[index]
                    if current_ht >= target_ht * stop_ratio:
                        break

        indices.sort()
        logger.info(
            f"Allocation {position + 1}/{len(allocations)} ({allocation.account_code}): "
            f"share={share:.4f} target_ht={quantize_money(target_ht)} "
            f"assigned_ht={quantize_money(current_ht)} items={indices}"
        )
        assignments.append(AllocationAssignment(
            position=position,
            allocation_id=allocation.id,
            account_code=allocation.account_code,
            item_indices=indices,
            share=share,
            target_ht=target_ht,
            assigned_ht=current_ht,
        ))

    return assignments


def check_allocation_coverage(
    item_count: int,
    allocations: Sequence[Allocation],
) -> AllocationCoverage:
    """Report which items the stored ``item_indices`` cover, read only"""
    coverage = AllocationCoverage(item_count=item_count)
    seen = set()
    duplicated = set()
    out_of_range = set()

    for allocation in allocations:
        if allocation.item_indices:
            coverage.allocations_with_items += 1
        else:
            coverage.allocations_without_items += 1
        for index in allocation.item_indices:
            if index < 0 or index >= item_count:
                out_of_range.add(index)
            elif index in seen:
                duplicated.add(index)
            else:
                seen.add(index)

    coverage.allocated_indices = sorted(seen)
    coverage.unallocated_indices = [i for i in range(item_count) if i not in seen]
    coverage.duplicated_indices = sorted(duplicated)
    coverage.out_of_range_indices = sorted(out_of_range)
    return coverage
