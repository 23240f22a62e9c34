"""
Small text helpers shared by the classifier, the context filter and the cache.
"""
import unicodedata


def fold_accents(text: str) -> str:
    """Strip diacritics: "cuánto" -> "cuanto", "tamaño" -> "tamano"."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold(text: str) -> str:
    """Lower-case and accent-fold, the form every keyword comparison uses."""
    return fold_accents((text or "").lower())
