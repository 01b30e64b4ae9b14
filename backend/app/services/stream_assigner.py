"""Single streaming pass assigning every row of the source file to a bucket."""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.services.bucket_tree import BucketTree
from app.services.progress import JobProgressTracker
from app.services.value_classifier import ValueClassifier

logger = get_logger(__name__)


@dataclass
class AssignmentStats:
    total_rows: int = 0
    empty_rows: int = 0
    catch_all_rows: int = 0
    exact_matches: int = 0
    fuzzy_matches: int = 0


class StreamAssigner:
    """Classify each record's value and bubble its count up the bucket path.

    Rows are consumed once, in order; only the tree and the classifier's
    caches are held in memory.
    """

    def __init__(
        self,
        tree: BucketTree,
        classifier: ValueClassifier,
        column: str,
        tracker: Optional[JobProgressTracker] = None,
        expected_rows: Optional[int] = None,
        stride: Optional[int] = None,
    ) -> None:
        self.tree = tree
        self.classifier = classifier
        self.column = column
        self.tracker = tracker
        self.expected_rows = expected_rows
        self.stride = max(1, stride or settings.progress_row_stride)

    def assign_row(self, row_index: int, raw_value: Optional[str], stats: AssignmentStats) -> None:
        value = "" if raw_value is None else str(raw_value).strip()
        catch_all = self.tree.catch_all

        if not value:
            stats.empty_rows += 1
            stats.catch_all_rows += 1
            catch_all.row_indices.append(row_index)
            catch_all.row_count += 1
            return

        resolution = self.classifier.resolve(value)
        if resolution.target is catch_all:
            stats.catch_all_rows += 1
            catch_all.row_indices.append(row_index)
            catch_all.row_count += 1
            return

        if resolution.source == "exact":
            stats.exact_matches += 1
        elif resolution.source == "fuzzy":
            stats.fuzzy_matches += 1
        for node in resolution.path:
            node.row_count += 1
        resolution.target.row_indices.append(row_index)

    def _checkpoint(self, rows_done: int) -> None:
        if self.tracker is None:
            return
        self.tracker.check_cancelled()
        if self.expected_rows:
            fraction = rows_done / self.expected_rows
            message = f"Assigned {rows_done:,} of {self.expected_rows:,} rows"
        else:
            fraction = 0.0
            message = f"Assigned {rows_done:,} rows"
        self.tracker.report("assigning", fraction, message)

    def run(self, records: Iterable[Mapping[str, Optional[str]]]) -> AssignmentStats:
        stats = AssignmentStats()
        row_index = 0
        for record in records:
            self.assign_row(row_index, record.get(self.column), stats)
            row_index += 1
            if row_index % self.stride == 0:
                self._checkpoint(row_index)
        stats.total_rows = row_index

        if self.tracker is not None:
            self.tracker.report("assigning", 1.0, f"Assigned {row_index:,} rows")
        logger.info(
            "stream_assignment_complete",
            column=self.column,
            total_rows=stats.total_rows,
            empty_rows=stats.empty_rows,
            catch_all_rows=stats.catch_all_rows,
            exact=stats.exact_matches,
            fuzzy=stats.fuzzy_matches,
        )
        return stats
