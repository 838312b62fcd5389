"""
Метрики Prometheus для воркеров.

Назначение:
- общие счётчики и гистограммы для стадий пайплайна
- экспорт /metrics отдельным HTTP-сервером (METRICS_ENABLED=true)
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from persona_relay.common.logging import get_project_logger

log = get_project_logger()

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

# Задержки по стадиям пайплайна
PIPELINE_STAGE_LATENCY_MS = Histogram(
    "relay_pipeline_stage_latency_ms",
    "Задержка выполнения стадий пайплайна (мс)",
    ["service", "stage"],
    buckets=(1, 2, 5, 10, 25, 50, 100, 250, 500, 1000, 2500),
)

# Обработка задач очередей
QUEUE_TASKS_TOTAL = Counter(
    "relay_queue_tasks_total",
    "Количество обработанных задач очереди",
    ["service", "queue", "result"],  # result=success|retry|failed
)

ENHANCE_SKIPS_TOTAL = Counter(
    "relay_enhance_skips_total",
    "Количество задач enhance, завершённых пропуском",
    ["reason"],
)

DISPATCH_EMITTED_TOTAL = Counter(
    "relay_dispatch_emitted_total",
    "Количество задач, поставленных в dispatch",
    ["result"],  # added|collapsed
)

DEAD_LETTERS_TOTAL = Counter(
    "relay_dead_letters_total",
    "Записи в dead-letter очередь",
    ["result"],  # recorded|vanished|error
)

HEALTH_PROBES_TOTAL = Counter(
    "relay_health_probes_total",
    "Проверки живости хранилища",
    ["result"],  # ok|failed
)

QUEUE_DEPTH = Gauge(
    "relay_queue_depth",
    "Текущая глубина очередей по статусам",
    ["queue", "status"],
)

DLQ_DEPTH = Gauge(
    "relay_dlq_depth",
    "Текущая глубина DLQ",
    ["queue"],
)

METRICS_COLLECTION_ERRORS_TOTAL = Counter(
    "relay_metrics_collection_errors_total",
    "Ошибки сборки служебных метрик",
    ["source"],
)


@contextmanager
def track_stage_latency(service: str, stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        PIPELINE_STAGE_LATENCY_MS.labels(service=service, stage=stage).observe(elapsed_ms)


def refresh_queue_metrics(queues: Iterable[Any], dead_letters: Any | None = None) -> None:
    """
    Обновляет gauge'и глубины. queues: JobQueue, dead_letters: DeadLetterStore.
    """
    try:
        for q in queues:
            for status, count in q.counts().items():
                QUEUE_DEPTH.labels(queue=q.name, status=status).set(count)
        if dead_letters is not None:
            DLQ_DEPTH.labels(queue=dead_letters.source_queue).set(dead_letters.depth())
    except Exception:
        METRICS_COLLECTION_ERRORS_TOTAL.labels(source="queue_metrics").inc()


def start_metrics_server(port: int) -> None:
    """
    Поднимает /metrics на отдельном порту (prometheus_client, daemon-поток).
    """
    start_http_server(port)
    log.info("metrics_server_started", extra={"payload": {"port": port}})
