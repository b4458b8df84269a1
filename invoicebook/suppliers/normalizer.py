"""Supplier name normalization and similarity"""

import re
import unicodedata
from typing import Optional, Set

STOPWORDS = frozenset({
    "sas", "sasu", "sarl", "sa", "eurl", "spa", "ltd", "inc",
    "societe", "maison", "ste", "ets", "etablissement",
    "les", "des", "du", "de", "la", "le", "l",
})

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_supplier_name(name: Optional[str]) -> str:
    """
    Canonical key for a supplier name.

    Accents are stripped, case folded, punctuation collapsed to single
    spaces, and legal-form/article tokens removed.

    >>> normalize_supplier_name("Établissements Dupont & Fils SARL")
    'etablissements dupont fils'
    >>> normalize_supplier_name("  Maison   LE Bon Pain ")
    'bon pain'
    """
    decomposed = unicodedata.normalize("NFD", str(name or ""))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    spaced = _NON_ALNUM_RUN.sub(" ", stripped.lower())
    words = [word for word in spaced.split() if word not in STOPWORDS]
    return " ".join(words)


def _significant_words(key: str) -> Set[str]:
    return {word for word in key.split(" ") if len(word) > 2}


def token_similarity(a: str, b: str) -> float:
    """
    Dice coefficient over the words longer than two characters.

    Returns 0.0 when either side has no such word.
    """
    words_a = _significant_words(a)
    words_b = _significant_words(b)
    if not words_a or not words_b:
        return 0.0
    common = len(words_a & words_b)
    return (2 * common) / (len(words_a) + len(words_b))


def supplier_code_base(key: str) -> str:
    """Four-to-six character code stem, padded with X"""
    return _NON_ALNUM.sub("", key.lower()).upper()[:6].ljust(4, "X")


def format_supplier_code(base: str, sequence: int) -> str:
    return f"{base}-{sequence:03d}"
