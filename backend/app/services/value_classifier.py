"""Resolve one distinct column value to a bucket path."""

from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Tuple

from app.services.bucket_tree import BucketNode, BucketTree, ExactMap

MatchSource = Literal["exact", "fuzzy", "catch_all"]


@dataclass(frozen=True)
class Resolution:
    """Root-to-target path plus the cascade step that produced it."""

    path: Tuple[BucketNode, ...]
    source: MatchSource

    @property
    def target(self) -> BucketNode:
        return self.path[-1]


class ValueClassifier:
    """Exact map, then deep substring match, then the catch-all.

    Decisions depend only on the tree and exact map, so the same value always
    resolves to the same node while both are unchanged. Fuzzy decisions are
    memoised up to ``cache_size`` values.
    """

    def __init__(self, tree: BucketTree, exact_map: ExactMap, cache_size: int = 100_000) -> None:
        self.tree = tree
        self.exact_map = exact_map
        self.cache_size = cache_size
        self._fuzzy_cache: Dict[str, Optional[Tuple[BucketNode, ...]]] = {}
        self._candidates: Optional[List[Tuple[str, Tuple[BucketNode, ...]]]] = None

    def _fuzzy_candidates(self) -> List[Tuple[str, Tuple[BucketNode, ...]]]:
        if self._candidates is None:
            candidates = []
            for node in self.tree.walk(include_catch_all=False):
                lowered = node.name.strip().lower()
                if lowered:
                    candidates.append((lowered, tuple(self.tree.find_path(node.id))))
            self._candidates = candidates
        return self._candidates

    def invalidate(self) -> None:
        """Forget cached fuzzy decisions after the tree has grown."""
        self._fuzzy_cache.clear()
        self._candidates = None

    def fuzzy_match(self, value: str) -> Optional[Tuple[BucketNode, ...]]:
        """First pre-order bucket whose name contains, or is contained in, ``value``."""
        if value in self._fuzzy_cache:
            return self._fuzzy_cache[value]
        lowered = value.lower()
        found: Optional[Tuple[BucketNode, ...]] = None
        for name, path in self._fuzzy_candidates():
            if name in lowered or lowered in name:
                found = path
                break
        if len(self._fuzzy_cache) < self.cache_size:
            self._fuzzy_cache[value] = found
        return found

    def resolve(self, value: str) -> Resolution:
        key = (value or "").strip()
        if not key:
            return Resolution((self.tree.catch_all,), "catch_all")

        exact = self.exact_map.get(key)
        if exact:
            return Resolution(tuple(exact), "exact")

        fuzzy = self.fuzzy_match(key)
        if fuzzy:
            return Resolution(fuzzy, "fuzzy")

        return Resolution((self.tree.catch_all,), "catch_all")
