"""Invoice bookkeeping backend: line-item deduplication, ledger allocation and supplier resolution"""

__version__ = "1.0.0"
