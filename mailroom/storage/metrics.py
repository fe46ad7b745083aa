from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(slots=True)
class StorageMetrics:
    """
    A data container for tracking operational metrics of a storage backend.

    Attributes:
        reads (int): The number of keys looked up, whether present or not.
        commits (int): The number of batches successfully committed.
        keys_written (int): The total number of keys set by committed batches.
        keys_deleted (int): The total number of keys deleted by committed batches.
        commit_errors (int): The number of batches whose commit raised.
    """

    reads: int = 0
    commits: int = 0
    keys_written: int = 0
    keys_deleted: int = 0
    commit_errors: int = 0

    def reset(self) -> None:
        """
        Reset all metric counters to zero.
        """
        self.reads = 0
        self.commits = 0
        self.keys_written = 0
        self.keys_deleted = 0
        self.commit_errors = 0

    def snapshot(self) -> Mapping[str, int]:
        """
        Return a stable, read-only snapshot of current metrics.
        """
        return {
            "reads": self.reads,
            "commits": self.commits,
            "keys_written": self.keys_written,
            "keys_deleted": self.keys_deleted,
            "commit_errors": self.commit_errors,
        }


class StorageMetricsMixin:
    """
    A mixin class that equips storage backends with metric tracking.

    Backends MAY inherit from this mixin. The mailbox service never depends on
    metrics being present.
    """

    def __init__(self) -> None:
        self._metrics = StorageMetrics()

    @property
    def metrics(self) -> StorageMetrics:
        return self._metrics

    def _metrics_on_read(self, count: int = 1) -> None:
        self._metrics.reads += count

    def _metrics_on_commit(self, *, written: int, deleted: int) -> None:
        self._metrics.commits += 1
        self._metrics.keys_written += written
        self._metrics.keys_deleted += deleted

    def _metrics_on_commit_error(self) -> None:
        self._metrics.commit_errors += 1
