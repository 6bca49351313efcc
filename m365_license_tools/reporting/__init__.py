"""Reporting package — console tables and CSV output."""

from .csv_export import export_assignments, export_removal_results
from .console import format_assignment_table, format_sku_table, format_removal_summary

__all__ = [
    "export_assignments",
    "export_removal_results",
    "format_assignment_table",
    "format_sku_table",
    "format_removal_summary",
]
