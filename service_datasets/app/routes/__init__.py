"""
HTTP routes for the datasets service.
"""

from .datasets import build_dataset_router

__all__ = ["build_dataset_router"]
