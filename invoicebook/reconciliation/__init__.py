"""Line-item deduplication, HT totals and allocation reconciliation"""

from .totals import item_ht, total_ht
from .deduplicator import (
    DeduplicationResult,
    DuplicateItem,
    deduplicate_items,
    find_similar_descriptions,
    item_fingerprint,
    normalize_description,
)
from .allocator import (
    AllocationAssignment,
    AllocationCoverage,
    check_allocation_coverage,
    reconcile_allocations,
    validate_allocation_amounts,
)

__all__ = [
    'item_ht',
    'total_ht',
    'DeduplicationResult',
    'DuplicateItem',
    'deduplicate_items',
    'find_similar_descriptions',
    'item_fingerprint',
    'normalize_description',
    'AllocationAssignment',
    'AllocationCoverage',
    'check_allocation_coverage',
    'reconcile_allocations',
    'validate_allocation_amounts',
]
