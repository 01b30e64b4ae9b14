"""Batched classification of distinct values through an external classifier."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from app.core.config import settings
from app.core.logging import get_logger
from app.services.bucket_tree import BucketTree, ExactMap
from app.services.llm import validate_mapping_response
from app.services.progress import JobProgressTracker
from app.services.retry import attempt

logger = get_logger(__name__)

# (column, batch values, name-only taxonomy) -> {"mappings": [...]}
MapBatchFn = Callable[[str, List[str], List[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


@dataclass
class BatchMappingStats:
    batches: int = 0
    failed_batches: int = 0
    mapped_values: int = 0
    unmapped_values: int = 0
    nodes_created: int = 0


def chunked(values: Sequence[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [list(values[i : i + size]) for i in range(0, len(values), size)]


class BatchMapper:
    """Grow the tree and fill the exact map, one batch at a time.

    Batches run strictly in order with a single outstanding classifier call,
    so every batch sees the nodes created by the ones before it. A batch
    whose retries are exhausted is skipped; its values stay unmapped.
    """

    def __init__(
        self,
        tree: BucketTree,
        exact_map: ExactMap,
        map_batch: MapBatchFn,
        column: str,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        tracker: Optional[JobProgressTracker] = None,
    ) -> None:
        self.tree = tree
        self.exact_map = exact_map
        self.map_batch = map_batch
        self.column = column
        self.batch_size = batch_size or settings.batch_size
        self.max_attempts = max_attempts or settings.batch_max_attempts
        self.retry_delay = settings.batch_retry_delay_seconds if retry_delay is None else retry_delay
        self.tracker = tracker

    async def _call(self, batch: List[str]) -> Dict[str, Any]:
        taxonomy = self.tree.to_taxonomy()
        response = await self.map_batch(self.column, batch, taxonomy)
        return validate_mapping_response(response)

    def apply_mappings(self, batch: List[str], mappings: List[Any]) -> int:
        """Record each ``{value, path}`` pair; returns how many values were mapped.

        Values are matched back to the batch case-insensitively; pairs naming
        a value outside the batch, or without a usable path, are ignored.
        """
        by_key = {v.strip().casefold(): v for v in batch}
        nodes_before = len(self.tree)
        mapped = 0
        for item in mappings:
            if not isinstance(item, dict):
                continue
            value = by_key.get(str(item.get("value", "")).strip().casefold())
            segments = item.get("path")
            if value is None or not isinstance(segments, list):
                continue
            path = self.tree.find_or_create_path(segments)
            if not path:
                continue
            if value not in self.exact_map:
                mapped += 1
            self.exact_map[value] = path
        created = len(self.tree) - nodes_before
        if created:
            logger.info("batch_nodes_created", column=self.column, created=created)
        return mapped

    async def run(self, values: Sequence[str]) -> BatchMappingStats:
        stats = BatchMappingStats()
        batches = chunked([v for v in values if v and v.strip()], self.batch_size)
        total = len(batches)
        nodes_at_start = len(self.tree)

        for n, batch in enumerate(batches, start=1):
            if self.tracker is not None:
                self.tracker.check_cancelled()

            result = await attempt(
                lambda: self._call(batch),
                max_attempts=self.max_attempts,
                delay=self.retry_delay,
                label=f"map_batch {n}/{total}",
            )
            stats.batches += 1
            if result.ok:
                mapped = self.apply_mappings(batch, result.value["mappings"])
                stats.mapped_values += mapped
                stats.unmapped_values += len(batch) - mapped
                message = f"Classified batch {n} of {total}"
            else:
                stats.failed_batches += 1
                stats.unmapped_values += len(batch)
                logger.error(
                    "batch_mapping_gave_up",
                    column=self.column,
                    batch=n,
                    attempts=result.attempts,
                    error=str(result.error),
                )
                message = f"Batch {n} of {total} could not be classified, continuing"

            if self.tracker is not None:
                self.tracker.report("batch_mapping", n / total, message)

        stats.nodes_created = len(self.tree) - nodes_at_start
        logger.info(
            "batch_mapping_complete",
            column=self.column,
            batches=stats.batches,
            failed_batches=stats.failed_batches,
            mapped=stats.mapped_values,
            unmapped=stats.unmapped_values,
            nodes_created=stats.nodes_created,
        )
        return stats
