"""Analysis modules - sanitary and reproductive reports."""

from rebanho.analysis.reports import (
    build_reproductive_report,
    build_sanitary_report,
    generate_comprehensive_report,
)

__all__ = [
    "build_sanitary_report",
    "build_reproductive_report",
    "generate_comprehensive_report",
]
