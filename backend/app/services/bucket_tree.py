"""Mutable bucket forest used by one classification job."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

CATCH_ALL_NAME = "General / Unformatted"

# distinct value -> root-to-target node path
ExactMap = Dict[str, List["BucketNode"]]


def _new_id() -> str:
    return str(uuid.uuid4())


def name_key(name: str) -> str:
    """Comparison key for bucket names (case-insensitive, trimmed)."""
    return name.strip().casefold()


@dataclass
class BucketNode:
    """One node of the classification hierarchy.

    ``row_count`` is a subtree aggregate; ``row_indices`` holds only the rows
    assigned directly to this node.
    """

    name: str
    depth: int = 0
    id: str = field(default_factory=_new_id)
    row_count: int = 0
    row_indices: List[int] = field(default_factory=list)
    children: List["BucketNode"] = field(default_factory=list)
    children_count: int = 0
    description: Optional[str] = None
    is_ai_suggested: bool = False

    def find_child(self, name: str) -> Optional["BucketNode"]:
        key = name_key(name)
        for child in self.children:
            if name_key(child.name) == key:
                return child
        return None

    def add_child(self, name: str, **kwargs: Any) -> "BucketNode":
        child = BucketNode(name=name, depth=self.depth + 1, **kwargs)
        self.children.append(child)
        self.children_count = len(self.children)
        return child

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "depth": self.depth,
            "rowCount": self.row_count,
            "rowIndices": list(self.row_indices),
            "children": [c.to_dict() for c in self.children],
            "childrenCount": self.children_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], depth: int = 0) -> "BucketNode":
        node = cls(
            name=str(data.get("name", "")),
            depth=depth,
            id=str(data.get("id") or _new_id()),
            row_count=int(data.get("rowCount", 0)),
            row_indices=[int(i) for i in data.get("rowIndices", [])],
        )
        node.children = [cls.from_dict(c, depth + 1) for c in data.get("children", [])]
        node.children_count = len(node.children)
        return node


class BucketTree:
    """Ordered forest of buckets whose first root is always the catch-all.

    A tree is owned by exactly one running job and passed explicitly through
    the pipeline.
    """

    def __init__(self, roots: Optional[List[BucketNode]] = None) -> None:
        roots = list(roots or [])
        if not roots or roots[0].name != CATCH_ALL_NAME:
            roots.insert(0, BucketNode(name=CATCH_ALL_NAME, depth=0))
        self.roots: List[BucketNode] = roots
        self._by_id: Dict[str, BucketNode] = {}
        self._parent: Dict[str, Optional[BucketNode]] = {}
        for root in self.roots:
            self._index(root, None)

    def _index(self, node: BucketNode, parent: Optional[BucketNode]) -> None:
        self._by_id[node.id] = node
        self._parent[node.id] = parent
        for child in node.children:
            self._index(child, node)

    @property
    def catch_all(self) -> BucketNode:
        return self.roots[0]

    def __len__(self) -> int:
        return len(self._by_id)

    def walk(self, include_catch_all: bool = True) -> Iterator[BucketNode]:
        """Pre-order, left-to-right traversal of the forest."""
        stack: List[BucketNode] = list(reversed(self.roots if include_catch_all else self.roots[1:]))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_by_id(self, node_id: str) -> Optional[BucketNode]:
        return self._by_id.get(node_id)

    def find_path(self, node_id: str) -> List[BucketNode]:
        """Nodes from a root down to ``node_id`` inclusive; empty if unknown."""
        node = self._by_id.get(node_id)
        path: List[BucketNode] = []
        while node is not None:
            path.append(node)
            node = self._parent.get(node.id)
        path.reverse()
        return path

    def find_root(self, name: str) -> Optional[BucketNode]:
        key = name_key(name)
        for root in self.roots:
            if name_key(root.name) == key:
                return root
        return None

    def add_root(self, name: str, **kwargs: Any) -> BucketNode:
        existing = self.find_root(name)
        if existing is not None:
            return existing
        node = BucketNode(name=name, depth=0, **kwargs)
        self.roots.append(node)
        self._index(node, None)
        return node

    def add_child(self, parent: BucketNode, name: str, **kwargs: Any) -> BucketNode:
        existing = parent.find_child(name)
        if existing is not None:
            return existing
        child = parent.add_child(name, **kwargs)
        self._index(child, parent)
        return child

    def find_or_create_path(self, segments: Sequence[Any]) -> List[BucketNode]:
        """Walk ``segments`` by case-insensitive name, creating missing nodes.

        Blank segments are skipped. Returns the root-to-leaf node path, empty
        when no usable segment was given. A path starting at the catch-all
        resolves to the catch-all alone; it never grows children.
        """
        names = [str(s).strip() for s in segments if s is not None and str(s).strip()]
        if names and name_key(names[0]) == name_key(CATCH_ALL_NAME):
            return [self.catch_all]
        path: List[BucketNode] = []
        for name in names:
            if not path:
                node = self.add_root(name)
            else:
                node = self.add_child(path[-1], name)
            path.append(node)
        return path

    def find_by_name_path(self, segments: Sequence[str]) -> Optional[BucketNode]:
        """Case-insensitive lookup that never creates nodes."""
        node: Optional[BucketNode] = None
        for i, name in enumerate(segments):
            node = self.find_root(name) if i == 0 else node.find_child(name)  # type: ignore[union-attr]
            if node is None:
                return None
        return node

    def total_rows(self) -> int:
        return sum(root.row_count for root in self.roots)

    def to_taxonomy(self, include_catch_all: bool = False) -> List[Dict[str, Any]]:
        """Name-only nested structure, small enough to send to a classifier."""

        def simplify(node: BucketNode) -> Dict[str, Any]:
            return {"name": node.name, "children": [simplify(c) for c in node.children]}

        roots = self.roots if include_catch_all else self.roots[1:]
        return [simplify(r) for r in roots]

    def to_dict(self) -> List[Dict[str, Any]]:
        return [root.to_dict() for root in self.roots]

    @classmethod
    def from_dict(cls, records: List[Dict[str, Any]]) -> "BucketTree":
        return cls([BucketNode.from_dict(r) for r in records])

    def check_invariants(self, check_rows: bool = True) -> List[str]:
        """Return human-readable descriptions of any structural violations.

        ``check_rows`` also verifies that no row index appears twice, which
        costs memory proportional to the row count.
        """
        problems: List[str] = []
        if self.catch_all.name != CATCH_ALL_NAME or self.catch_all.depth != 0:
            problems.append("first root is not the catch-all")
        seen_rows: Dict[int, str] = {}

        def check_siblings(nodes: List[BucketNode], where: str) -> None:
            keys = [name_key(n.name) for n in nodes]
            if len(keys) != len(set(keys)):
                problems.append(f"duplicate sibling names under {where}")

        check_siblings(self.roots, "forest")
        for node in self.walk():
            if node.children_count != len(node.children):
                problems.append(f"{node.name}: childrenCount {node.children_count} != {len(node.children)}")
            if node.row_count < 0:
                problems.append(f"{node.name}: negative rowCount")
            check_siblings(node.children, node.name)
            for child in node.children:
                if child.depth != node.depth + 1:
                    problems.append(f"{child.name}: depth {child.depth} under depth {node.depth}")
            for idx in node.row_indices if check_rows else ():
                if idx in seen_rows:
                    problems.append(f"row {idx} assigned to both {seen_rows[idx]} and {node.name}")
                seen_rows[idx] = node.name
        return problems
