"""Turn a confirmed taxonomy into a live bucket tree."""

import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from app.core.logging import get_logger
from app.schemas.requests import TaxonomyNodeIn
from app.services.bucket_tree import CATCH_ALL_NAME, BucketNode, BucketTree, ExactMap, name_key

logger = get_logger(__name__)

TaxonomyInput = Union[TaxonomyNodeIn, Mapping[str, Any]]

_SPLIT_PATTERN = re.compile(r"[|>,\-/]")


def _as_dict(node: TaxonomyInput) -> Dict[str, Any]:
    if isinstance(node, TaxonomyNodeIn):
        return node.model_dump()
    return dict(node) if isinstance(node, Mapping) else {}


def _field(node: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in node:
            return node[key]
    return None


def build_bucket_tree(taxonomy: Iterable[TaxonomyInput]) -> Tuple[BucketTree, ExactMap]:
    """Build a fresh tree (catch-all first) and the alias exact map.

    Every node gets a new id, zero counts and a depth counted from 0 at the
    roots. Nodes whose names collide case-insensitively with an earlier
    sibling are merged into it. A missing name becomes the literal string of
    the missing field.
    """
    tree = BucketTree()
    exact_map: ExactMap = {}

    def visit(raw: TaxonomyInput, parent: Optional[BucketNode]) -> None:
        data = _as_dict(raw)
        name = str(_field(data, "name")).strip()
        extras = {
            "description": _field(data, "description"),
            "is_ai_suggested": bool(_field(data, "is_ai_suggested", "isAiSuggested") or False),
        }
        if parent is None:
            node = tree.add_root(name, **extras)
        else:
            node = tree.add_child(parent, name, **extras)

        for alias in _field(data, "match") or []:
            key = str(alias).strip()
            if key and key not in exact_map:
                exact_map[key] = tree.find_path(node.id)

        children = _field(data, "children") or []
        if node is tree.catch_all:
            if children:
                logger.warning("catch_all_children_dropped", count=len(children))
            return
        for child in children:
            visit(child, node)

    for root in taxonomy or []:
        visit(root, None)

    logger.info("bucket_tree_built", nodes=len(tree), roots=len(tree.roots), aliases=len(exact_map))
    return tree, exact_map


def seed_name_matches(tree: BucketTree, exact_map: ExactMap, values: Iterable[str]) -> int:
    """Map distinct values equal (case-insensitively) to a bucket name.

    The first bucket in pre-order wins. Values already in the exact map are
    left alone. Returns the number of entries added.
    """
    by_name: Dict[str, BucketNode] = {}
    for node in tree.walk(include_catch_all=False):
        by_name.setdefault(name_key(node.name), node)

    added = 0
    for value in values:
        key = str(value).strip()
        if not key or key in exact_map:
            continue
        node = by_name.get(name_key(key))
        if node is not None:
            exact_map[key] = tree.find_path(node.id)
            added += 1
    return added


def sorted_by_count(unique_values: Mapping[str, int]) -> List[Tuple[str, int]]:
    """Distinct values by descending count, ties in first-seen order."""
    return sorted(unique_values.items(), key=lambda kv: -kv[1])


def deterministic_taxonomy(unique_values: Mapping[str, int], limit: int) -> List[Dict[str, Any]]:
    """Flat taxonomy of the most frequent values, each matched verbatim."""
    return [
        {"name": value, "children": [], "match": [value]}
        for value, _ in sorted_by_count(unique_values)[:limit]
    ]


def heuristic_taxonomy(unique_values: Mapping[str, int]) -> List[Dict[str, Any]]:
    """Parent/child proposal from values that already look hierarchical.

    ``"Finance > Banking"`` and ``"Finance | Banking"`` both yield
    ``Finance -> Banking``. Only the first two segments are used.
    """
    roots: Dict[str, Dict[str, Any]] = {}
    for value in unique_values:
        parts = [p.strip() for p in _SPLIT_PATTERN.split(str(value)) if p.strip()]
        if not parts:
            continue
        top = parts[0]
        root = roots.setdefault(name_key(top), {"name": top, "children": [], "isAiSuggested": True})
        if len(parts) > 1:
            sub = parts[1]
            if all(name_key(c["name"]) != name_key(sub) for c in root["children"]):
                root["children"].append({"name": sub, "children": [], "isAiSuggested": True})
    return list(roots.values())


def strip_catch_all(taxonomy: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Drop a proposed top-level catch-all; the tree always adds its own."""
    return [n for n in taxonomy if name_key(str(n.get("name", ""))) != name_key(CATCH_ALL_NAME)]
