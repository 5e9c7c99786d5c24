from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON Lines error log.

Every per-record persistence failure of a commit is written here so that a
failed alias/entry/mapping upsert is never dropped silently. ``record_key`` is
the natural key of the failed record rendered as text; ``-`` is used for
file-level errors where no single record applies.
"""

__all__ = [
    "ErrorRecord",
    "FILE_LEVEL_KEY",
]

FILE_LEVEL_KEY = "-"


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: report filename being imported
        record_type: alias | entry | relative_mapping | template | import_log | file
        record_key: natural key of the record, or '-' for file-level errors
        error_type: error classification in UPPER_SNAKE_CASE format
        message: database error message or description
    """
    timestamp: str
    file: str
    record_type: str
    record_key: str
    error_type: str
    message: str

    @staticmethod
    def create(file: str, record_type: str, record_key: str, error_type: str, message: str) -> ErrorRecord:
        """Create a new ErrorRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            record_type=record_type,
            record_key=record_key,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # dataclass -> dict keeps the key set fixed
        return json.dumps(asdict(self), ensure_ascii=False)
