import csv
import io
from typing import Dict, List, Optional, Tuple

import pandas as pd

from conversion.errors import ReadError

BOM = "\ufeff"
DEFAULT_DELIMITER = ","
SNIFF_DELIMITERS = ",;\t|"

KNOWN_PATTERNS = {
    'case_id': [
        'case:concept:name', 'case:id', 'CaseID', 'case_id', 'caseid',
        'Case ID', 'Case_ID', 'case', 'Case', 'trace_id', 'TraceID'
    ],
    'activity': [
        'concept:name', 'Activity', 'activity', 'event', 'Event',
        'task', 'Task', 'activity_name', 'ActivityName', 'Action'
    ],
    'timestamp': [
        'time:timestamp', 'Timestamp', 'timestamp', 'time', 'Time',
        'start_time', 'StartTime', 'event_time', 'EventTime',
        'complete_time', 'CompleteTime'
    ],
    'resource': [
        'org:resource', 'Resource', 'resource', 'user', 'User',
        'org:role', 'role', 'Role', 'actor', 'Actor', 'agent', 'Agent'
    ]
}


def _has_open_quote(text: str, delimiters: str = SNIFF_DELIMITERS) -> bool:
    """True if ``text`` ends inside a quoted field. Quotes only open a field at its start."""
    in_quotes = False
    at_field_start = True
    i = 0
    while i < len(text):
        ch = text[i]
        if in_quotes:
            if ch == '"':
                if text[i + 1:i + 2] == '"':
                    i += 1
                else:
                    in_quotes = False
        elif ch == '"' and at_field_start:
            in_quotes = True
        elif ch == BOM and at_field_start:
            i += 1
            continue
        at_field_start = not in_quotes and ch in delimiters + "\r\n"
        i += 1
    return in_quotes


def _read_first_record(stream, delimiters: str = SNIFF_DELIMITERS) -> str:
    record = ""
    while True:
        try:
            line = stream.readline()
            if isinstance(line, bytes):
                line = line.decode("utf-8")
        except (OSError, ValueError) as e:
            raise ReadError(f"Failed to read CSV header: {e}") from e

        if not line:
            break
        # blank lines before the header are skipped
        if not record and not line.strip("\r\n"):
            continue
        record += line
        if not _has_open_quote(record, delimiters):
            break

    if not record:
        raise ReadError("Failed to read CSV header: input is empty")
    return record


def sniff_delimiter(record: str) -> str:
    try:
        return csv.Sniffer().sniff(record, delimiters=SNIFF_DELIMITERS).delimiter
    except csv.Error:
        return DEFAULT_DELIMITER


def get_file_columns(stream, delimiter: Optional[str] = None) -> Tuple[List[str], str]:
    """
    Read the column names from the first line of a CSV stream.

    The stream is neither closed nor rewound. Stray quotes inside fields are
    tolerated. The delimiter is sniffed unless one is given.

    Returns: (columns, delimiter)
    """
    if delimiter is not None and len(delimiter) != 1:
        raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")

    record = _read_first_record(stream, delimiter or SNIFF_DELIMITERS)
    if delimiter is None:
        delimiter = sniff_delimiter(record)

    try:
        first = pd.read_csv(
            io.StringIO(record.lstrip(BOM)),
            sep=delimiter,
            header=None,
            nrows=1,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
        )
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise ReadError(f"Failed to parse CSV header: {e}") from e
    if first.empty:
        raise ReadError("Failed to parse CSV header: no fields found")

    # remove BOM and spaces
    columns = [str(col).lstrip(BOM + " ") for col in first.iloc[0].tolist()]
    return columns, delimiter


def detect_columns(columns: List[str]) -> Dict[str, str]:
    """Map event-log roles (case_id, activity, timestamp, resource) to header columns."""
    detected: Dict[str, str] = {}
    for role, patterns in KNOWN_PATTERNS.items():
        for col in columns:
            if col in patterns and col not in detected.values():
                detected[role] = col
                break

    if 'case_id' not in detected:
        for col in columns:
            col_lower = col.lower()
            if 'case' in col_lower and ('id' in col_lower or 'name' in col_lower):
                detected['case_id'] = col
                break

    if 'timestamp' not in detected:
        for col in columns:
            col_lower = col.lower()
            if ('time' in col_lower or 'date' in col_lower) and col not in detected.values():
                detected['timestamp'] = col
                break

    return detected
