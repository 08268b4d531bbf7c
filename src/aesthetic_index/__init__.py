"""Aesthetic Index.

Incremental, confidence-aware aesthetic scoring for NFT items and
collections, driven by pairwise comparisons, slider ratings and favorites.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
