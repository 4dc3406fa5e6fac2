"""
Shared result records for batch workflows.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ProcessedItem:
    """Outcome of one logical unit inside a batch."""
    key: str
    status: str  # 'success', 'failed', 'skipped'
    duration_ms: float = 0.0
    system: Optional[str] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkerResult:
    """Summary of a batch run: counts per outcome plus per-unit records.

    ``add_item_result`` may be called from several worker threads.
    """
    task_name: str
    success_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    duration_ms: float = 0
    cancelled: bool = False
    processed_items: list[ProcessedItem] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_item_result(
        self,
        key: str,
        status: str,
        duration_ms: float = 0.0,
        system: Optional[str] = None,
        error: Optional[str] = None,
        **metadata: Any,
    ) -> ProcessedItem:
        item = ProcessedItem(
            key=key,
            status=status,
            duration_ms=duration_ms,
            system=system,
            error_message=error,
            metadata=metadata,
        )
        with self._lock:
            self.processed_items.append(item)
            if status == "success":
                self.success_count += 1
            elif status == "failed":
                self.failed_count += 1
                if error:
                    self.errors.append(f"{key}: {error}")
            else:
                self.skipped_count += 1
        return item

    @property
    def total_items(self) -> int:
        return self.success_count + self.failed_count + self.skipped_count

    @property
    def success_rate(self) -> float:
        if self.total_items == 0:
            return 0.0
        return self.success_count / self.total_items

    def status_counts(self) -> Counter:
        """Counts of the ``outcome`` metadata field (e.g. verification status)."""
        return Counter(
            item.metadata.get("outcome", item.status) for item in self.processed_items
        )

    def __str__(self) -> str:
        text = (
            f"{self.task_name}: "
            f"{self.success_count} OK, "
            f"{self.failed_count} ERR, "
            f"{self.skipped_count} SKIP "
            f"({self.duration_ms:.0f}ms)"
        )
        if self.cancelled:
            text += " [cancelled]"
        return text
