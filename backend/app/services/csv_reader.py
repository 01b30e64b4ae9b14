"""Forward-only record streams over delimited files."""

import csv
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from app.core.exceptions import StreamingError
from app.core.logging import get_logger

logger = get_logger(__name__)


def iter_records(path: str) -> Iterator[Dict[str, Optional[str]]]:
    """Yield rows as field -> value mappings in file order.

    Field names come from the header line; blank lines are skipped. The file
    handle is closed when the generator is exhausted or closed.
    """
    line = 0
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            for row in reader:
                line = reader.line_num
                yield row
    except csv.Error as exc:
        raise StreamingError(path, str(exc), row_index=line) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise StreamingError(path, str(exc)) from exc


def read_header(path: str) -> List[str]:
    try:
        with open(path, "r", newline="", encoding="utf-8-sig") as f:
            return next(csv.reader(f), [])
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise StreamingError(path, str(exc)) from exc


def read_metadata(path: str) -> Tuple[List[str], int]:
    """Header columns and data row count."""
    row_count = 0
    for _ in iter_records(path):
        row_count += 1
    return read_header(path), row_count


def _cell(row: Dict[str, Optional[str]], column: str) -> str:
    value = row.get(column)
    return "" if value is None else str(value).strip()


def count_unique_values(
    path: str, column: str, limit: Optional[int] = None
) -> Tuple[Dict[str, int], int, int]:
    """Scan ``column`` and return (trimmed value -> count, rows scanned, empty rows)."""
    unique_values: Dict[str, int] = {}
    total_rows = 0
    empty_count = 0
    for row in iter_records(path):
        if limit is not None and total_rows >= limit:
            break
        value = _cell(row, column)
        if not value:
            empty_count += 1
        else:
            unique_values[value] = unique_values.get(value, 0) + 1
        total_rows += 1
    return unique_values, total_rows, empty_count


def read_rows_at(path: str, indices: Iterable[int], limit: int = 50) -> List[Dict[str, Optional[str]]]:
    """Rows whose 0-based index is in ``indices``, at most ``limit`` of them."""
    wanted: Set[int] = set(indices)
    rows: List[Dict[str, Optional[str]]] = []
    if not wanted or limit <= 0:
        return rows
    last = max(wanted)
    for index, row in enumerate(iter_records(path)):
        if index in wanted:
            rows.append({k: v for k, v in row.items() if k is not None})
            if len(rows) >= limit:
                break
        if index >= last:
            break
    return rows
