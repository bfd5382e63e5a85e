"""Export activity records to CSV or JSON."""

import csv
import json

from .categories import display_name
from .models import ActivityRecord, format_timestamp, parse_timestamp

FIELDS = [
    "id",
    "timestamp",
    "sender",
    "subject",
    "category",
    "category_name",
    "status",
    "message_id",
    "thread_id",
    "draft_id",
    "draft_url",
    "scheduled_send_time",
    "sent_at",
]


def _row(record: ActivityRecord, language: str) -> dict:
    return {
        "id": record.id,
        "timestamp": format_timestamp(record.timestamp),
        "sender": record.sender,
        "subject": record.subject,
        "category": record.category.value,
        "category_name": display_name(record.category, language),
        "status": record.status.value,
        "message_id": record.message_id,
        "thread_id": record.thread_id,
        "draft_id": record.draft_id,
        "draft_url": record.draft_url,
        "scheduled_send_time": format_timestamp(parse_timestamp(record.scheduled_send_time)),
        "sent_at": format_timestamp(record.sent_at),
    }


def export_activities(records: list[ActivityRecord], format: str, output_path: str, language: str = "fr") -> int:
    """Write activity records to a file and return how many were written.

    Args:
        records: Activity records to export.
        format: Output format, either 'csv' or 'json'.
        output_path: Path to write the output file.
        language: Language for category display names.
    """
    rows = [_row(r, language) for r in records]

    if format == "csv":
        with open(output_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDS)
            writer.writeheader()
            writer.writerows(rows)
    elif format == "json":
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)
    else:
        raise ValueError(f"Unsupported export format: {format}")

    return len(rows)
