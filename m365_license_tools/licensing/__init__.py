"""Licensing package — SKU resolution, direct-assignment discovery, removal."""

from .models import (
    SubscribedSku,
    LicenseAssignment,
    RemovalRequest,
    RemovalResult,
    RemovalSummary,
)
from .skus import SkuCatalog, LicenseResolutionError
from .direct import DirectAssignmentCollector, classify_user
from .csv_input import read_removal_csv, CsvFormatError
from .remover import LicenseRemover

__all__ = [
    "SubscribedSku",
    "LicenseAssignment",
    "RemovalRequest",
    "RemovalResult",
    "RemovalSummary",
    "SkuCatalog",
    "LicenseResolutionError",
    "DirectAssignmentCollector",
    "classify_user",
    "read_removal_csv",
    "CsvFormatError",
    "LicenseRemover",
]
