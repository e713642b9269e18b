"""Plain-text and dictionary summaries of sync run results."""

from typing import Any, Dict, List

from ..models.sync_models import RunState, SyncResult, format_datetime

MAX_LISTED_ERRORS = 10


def format_duration(seconds: float) -> str:
    """Human readable duration: ``850ms``, ``12.5s``, ``3.2m``, ``1.5h``."""
    seconds = max(seconds, 0.0)
    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def _format_errors(result: SyncResult) -> str:
    if not result.errors:
        return "None"
    lines = []
    for error in result.errors[:MAX_LISTED_ERRORS]:
        where = []
        if error.record_id is not None:
            where.append(f"record {error.record_id}")
        if error.target_system:
            where.append(error.target_system)
        location = f" ({', '.join(where)})" if where else ""
        lines.append(f"- [{error.code}]{location}: {error.message}")
    remaining = len(result.errors) - MAX_LISTED_ERRORS
    if remaining > 0:
        lines.append(f"- ... and {remaining} more")
    return "\n".join(lines)


def generate_sync_report(result: SyncResult) -> str:
    """Format a run result as a plain-text report."""
    manual = result.manual_review_conflicts
    report = f"""
Sync Report
===========
Run: {result.id}
Configuration: {result.configuration_id}
Status: {result.status.value}{' (dry run)' if result.dry_run else ''}
Duration: {format_duration(result.duration)}
Progress: {result.progress:.0f}%

Records:
- Total: {result.total_records}
- Processed: {result.processed_records}
- Succeeded: {result.successful_records}
- Failed: {result.failed_records}

Conflicts: {len(result.conflicts)} ({len(manual)} awaiting manual review)
Throughput: {result.metrics.throughput_per_minute:.1f} records/min

Errors: {len(result.errors)}
{_format_errors(result)}

Started: {format_datetime(result.start_time)}
Ended: {format_datetime(result.end_time)}
    """.strip()

    if result.status == RunState.FAILED:
        report += "\n\nThe run failed before processing records; check the source system."
    elif result.status == RunState.CANCELLED:
        report += "\n\nThe run was cancelled; remaining records will be picked up by the next run."
    return report


def summarize_result(result: SyncResult) -> Dict[str, Any]:
    """Compact summary used in handler responses."""
    summary = {
        "run_id": result.id,
        "configuration_id": result.configuration_id,
        "status": result.status.value,
        "dry_run": result.dry_run,
        "duration": format_duration(result.duration),
        "processed_records": result.processed_records,
        "total_records": result.total_records,
        "successful_records": result.successful_records,
        "failed_records": result.failed_records,
        "error_count": len(result.errors),
        "conflict_count": len(result.conflicts),
        "manual_review_count": len(result.manual_review_conflicts),
        "metrics": result.metrics.to_dict(),
    }
    if result.operations is not None:
        summary["operations"] = [operation.to_dict() for operation in result.operations]
    return summary


def assess_data_quality(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Score the share of populated top-level fields across ``records``."""
    issues = []
    total_fields = 0
    valid_fields = 0
    for index, record in enumerate(records, start=1):
        for field_name, value in record.items():
            total_fields += 1
            if value is None or value == "":
                issues.append(f"Record {index}: Missing value for field '{field_name}'")
            else:
                valid_fields += 1

    score = round(valid_fields / total_fields * 100) if total_fields else 0
    return {"score": score, "issues": issues}
