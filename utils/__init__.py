"""Utility modules for the AV BOQ builder."""

from utils.log_config import configure_logging
from utils.report import format_pricing_report, print_pricing_report

__all__ = [
    "configure_logging",
    "format_pricing_report",
    "print_pricing_report",
]
