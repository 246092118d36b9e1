"""Data processing module."""

from .aggregator import compute_rating_data, compute_review_summary
from .normalizer import normalize_product, normalize_review
from .taxonomy import ViolationTaxonomy

__all__ = [
    "ViolationTaxonomy",
    "compute_rating_data",
    "compute_review_summary",
    "normalize_product",
    "normalize_review",
]
