from __future__ import annotations

from prometheus_client import REGISTRY

from persona_relay.common.metrics import refresh_queue_metrics
from persona_relay.queue.dead_letter import InlineDeadLetterStore
from persona_relay.queue.jobs import InlineJobQueue
from persona_relay.queue.retry import JobOptions


def test_refresh_queue_metrics_sets_depth_gauges(clock) -> None:
    q = InlineJobQueue("metrics-q", clock=clock.millis)
    q.add("x", {}, JobOptions(job_id="a"))
    q.add("x", {}, JobOptions(job_id="b"))
    dlq = InlineDeadLetterStore("metrics-q", keep=5)

    refresh_queue_metrics([q], dlq)

    waiting = REGISTRY.get_sample_value(
        "relay_queue_depth", {"queue": "metrics-q", "status": "waiting"}
    )
    assert waiting == 2.0
    assert REGISTRY.get_sample_value("relay_dlq_depth", {"queue": "metrics-q"}) == 0.0


def test_refresh_queue_metrics_counts_collection_errors() -> None:
    class _Broken:
        name = "broken"

        def counts(self):
            raise RuntimeError("down")

    labels = {"source": "queue_metrics"}
    before = REGISTRY.get_sample_value("relay_metrics_collection_errors_total", labels) or 0.0
    refresh_queue_metrics([_Broken()])
    after = REGISTRY.get_sample_value("relay_metrics_collection_errors_total", labels)
    assert after == before + 1
