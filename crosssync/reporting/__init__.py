"""Run result reporting."""

from .report_formatter import assess_data_quality, format_duration, generate_sync_report, summarize_result

__all__ = [
    "assess_data_quality",
    "format_duration",
    "generate_sync_report",
    "summarize_result",
]
