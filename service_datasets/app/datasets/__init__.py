"""
Dataset models and typed accessors.
"""

from .accessors import DailyRowsResult, DatasetAccessor, ManifestResult
from .models import BorrowingRow, Dataset, DatasetRow, LendingRow, Manifest

__all__ = [
    "BorrowingRow",
    "DailyRowsResult",
    "Dataset",
    "DatasetAccessor",
    "DatasetRow",
    "LendingRow",
    "Manifest",
    "ManifestResult",
]
