"""Flatten serialized bucket forests into table rows."""

from typing import Any, Dict, List, Optional

MAX_LEVELS = 5
EXPORT_HEADER = [f"L{i}" for i in range(1, MAX_LEVELS + 1)] + ["row_count", "own_rows", "bucket_id"]


def flatten(root_buckets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """One row per bucket in pre-order, with L1..L5 path columns.

    Buckets deeper than five levels keep their counts but only the first
    five path labels.
    """

    rows: List[Dict[str, Any]] = []

    def visit(node: Dict[str, Any], path: List[str]) -> None:
        path = path + [str(node.get("name", ""))]
        row: Dict[str, Any] = {f"L{i}": label for i, label in enumerate(path[:MAX_LEVELS], start=1)}
        row["row_count"] = int(node.get("rowCount", 0))
        row["own_rows"] = len(node.get("rowIndices") or [])
        row["bucket_id"] = node.get("id", "")
        rows.append(row)
        for child in node.get("children") or []:
            visit(child, path)

    for root in root_buckets:
        visit(root, [])
    return rows


def collect_row_indices(node: Dict[str, Any]) -> List[int]:
    """Row indices of ``node`` and its whole subtree, in ascending order."""
    indices: List[int] = []
    stack = [node]
    while stack:
        current = stack.pop()
        indices.extend(current.get("rowIndices") or [])
        stack.extend(current.get("children") or [])
    return sorted(indices)


def find_bucket(root_buckets: List[Dict[str, Any]], bucket_id: str) -> Optional[Dict[str, Any]]:
    stack = list(root_buckets)
    while stack:
        node = stack.pop()
        if node.get("id") == bucket_id:
            return node
        stack.extend(node.get("children") or [])
    return None
