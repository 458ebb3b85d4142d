"""Export detected senders to CSV or JSON."""

import csv
import json

from .display import sort_senders
from .models import DetectedSender, SelectionState
from .scorer import classify_confidence

FIELDNAMES = [
    "email",
    "name",
    "domain",
    "email_count",
    "confidence_score",
    "classification",
    "selected",
    "approved",
    "sample_subjects",
]


def _row(sender: DetectedSender) -> dict:
    return {
        "email": sender.email,
        "name": sender.name,
        "domain": sender.domain,
        "email_count": sender.email_count,
        "confidence_score": sender.confidence_score,
        "classification": classify_confidence(sender.confidence_score),
        "selected": sender.selection == SelectionState.SELECTED,
        "approved": sender.is_approved,
        "sample_subjects": sender.sample_subjects,
    }


def export_senders(senders: list[DetectedSender], format: str, output_path: str) -> int:
    """Export detected senders to a file.

    Args:
        senders: Detected senders of one connection.
        format: Output format, either 'csv' or 'json'.
        output_path: Path to write the output file.

    Returns:
        The number of senders written.
    """
    rows = [_row(s) for s in sort_senders(senders)]

    if format == "csv":
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
            writer.writeheader()
            for row in rows:
                writer.writerow({**row, "sample_subjects": "; ".join(row["sample_subjects"])})
    elif format == "json":
        with open(output_path, "w") as f:
            json.dump(rows, f, indent=2)
    else:
        raise ValueError(f"Unsupported export format: {format}")

    return len(rows)
