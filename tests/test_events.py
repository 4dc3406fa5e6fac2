import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from emuident.common.events import EventBus, ProgressEvent, StageProgress
from emuident.common.exceptions import WorkflowCancelledError
from emuident.common.types import WorkerResult


class TestEventBus:
    def test_subscribe_and_emit(self):
        bus = EventBus()
        callback = MagicMock()
        bus.subscribe("task_started", callback)

        bus.emit("task_started", name="scan")

        event = callback.call_args[0][0]
        assert event.event_type == "task_started"
        assert event.payload == {"name": "scan"}

    def test_unsubscribe(self):
        bus = EventBus()
        callback = MagicMock()
        bus.subscribe("x", callback)
        bus.unsubscribe("x", callback)

        bus.emit("x")

        callback.assert_not_called()

    def test_broken_subscriber_does_not_stop_others(self):
        bus = EventBus()
        good = MagicMock()
        bus.subscribe("x", MagicMock(side_effect=RuntimeError("boom")))
        bus.subscribe("x", good)

        bus.emit("x")

        good.assert_called_once()


class TestStageProgress:
    def test_events_in_order_and_single_terminal(self):
        events = []
        progress = StageProgress("hash", listener=events.append)

        progress.start(3)
        for _ in range(3):
            progress.advance()
        assert progress.finish() is True
        assert progress.finish() is False
        progress.advance()

        assert [e.done for e in events] == [0, 1, 2, 3, 3]
        assert [e.finished for e in events].count(True) == 1
        assert events[-1].total == 3

    def test_concurrent_advance_is_monotonic(self):
        events = []
        progress = StageProgress("verify", total=200, listener=events.append)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: progress.advance(), range(200)))
        progress.finish()

        done = [e.done for e in events]
        assert done == sorted(done)
        assert done[-1] == 200

    def test_negative_advance_rejected(self):
        with pytest.raises(ValueError):
            StageProgress("scan").advance(-1)

    def test_context_manager_finishes_on_cancel(self):
        events = []
        cancel = threading.Event()

        with pytest.raises(WorkflowCancelledError):
            with StageProgress("scan", listener=events.append, cancel_event=cancel):
                cancel.set()
                raise WorkflowCancelledError("scan")

        assert events[-1].finished
        assert events[-1].cancelled

    def test_listener_failure_is_contained(self):
        progress = StageProgress("scan", listener=MagicMock(side_effect=RuntimeError("ui gone")))
        progress.advance()
        assert progress.done == 1

    def test_forwards_to_bus(self):
        bus = EventBus()
        seen = []
        bus.subscribe("progress", lambda e: seen.append(e.payload["event"]))

        StageProgress("identify", total=1, event_bus=bus).finish()

        assert seen[0].stage == "identify"
        assert seen[0].finished

    def test_fraction(self):
        assert ProgressEvent("x", 1, 4).fraction == 0.25
        assert ProgressEvent("x", 1).fraction is None


class TestWorkerResult:
    def test_counts_and_errors(self):
        result = WorkerResult(task_name="verify")
        result.add_item_result("a", "success", outcome="Verified")
        result.add_item_result("b", "failed", error="bad dump", outcome="Mismatch")
        result.add_item_result("c", "skipped", outcome="NoCatalog")
        result.add_item_result("d", "success", outcome="Verified")

        assert result.total_items == 4
        assert result.success_rate == 0.5
        assert result.errors == ["b: bad dump"]
        assert result.status_counts() == {"Verified": 2, "Mismatch": 1, "NoCatalog": 1}

    def test_str(self):
        result = WorkerResult(task_name="hash", cancelled=True)
        result.add_item_result("a", "success")
        assert str(result).startswith("hash: 1 OK, 0 ERR, 0 SKIP")
        assert "[cancelled]" in str(result)

    def test_empty_rate(self):
        assert WorkerResult(task_name="x").success_rate == 0.0
