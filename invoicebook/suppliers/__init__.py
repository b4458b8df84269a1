"""Supplier name normalization and resolution"""

from .normalizer import normalize_supplier_name, token_similarity, supplier_code_base
from .supplier_service import SupplierService, SupplierResolution, MatchType

__all__ = [
    'normalize_supplier_name',
    'token_similarity',
    'supplier_code_base',
    'SupplierService',
    'SupplierResolution',
    'MatchType',
]
