"""
Worker Enhancer.

Алгоритм:
- readiness: конфигурация + ping Redis в пределах REDIS_CONNECT_TIMEOUT_SEC,
  иначе процесс завершается с ненулевым кодом
- пул потоков читает очередь enhance и прогоняет EnhanceStage
- окончательно упавшие задачи пишутся в DLQ (enhance:dlq)
- health monitor пингует Redis каждые HEALTH_INTERVAL_SEC
- SIGINT/SIGTERM: дождаться текущих попыток и закрыть соединение
"""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StartupError
from persona_relay.common.events import EventBus
from persona_relay.common.logging import get_project_logger
from persona_relay.common.metrics import refresh_queue_metrics
from persona_relay.common.observability import setup_observability
from persona_relay.queue.claims import get_claim_store
from persona_relay.queue.dead_letter import get_dead_letter_store
from persona_relay.queue.dispatcher import Q_DISPATCH, Q_ENHANCE
from persona_relay.queue.jobs import get_queue
from persona_relay.queue.redis import close_redis_client
from persona_relay.queue.worker import Worker
from persona_relay.services.dead_letter_service import DeadLetterRecorder
from persona_relay.services.enhance_stage import EnhanceStage
from persona_relay.services.health_monitor import HealthMonitor
from persona_relay.services.readiness_service import enforce_startup_readiness

log = get_project_logger()

_METRICS_REFRESH_SEC = 15.0
_SHUTDOWN_TIMEOUT_SEC = 30.0


@dataclass
class Runtime:
    bus: EventBus
    worker: Worker
    recorder: DeadLetterRecorder
    monitor: HealthMonitor


def build_runtime() -> Runtime:
    s = get_settings()
    bus = EventBus()
    store = get_claim_store()
    intake = get_queue(Q_ENHANCE)

    recorder = DeadLetterRecorder(intake, get_dead_letter_store(Q_ENHANCE))
    recorder.attach(bus)

    worker = Worker(
        intake,
        EnhanceStage(store=store, bus=bus),
        bus=bus,
        concurrency=int(s.worker_concurrency),
        block_timeout_sec=float(s.worker_block_timeout_sec),
        service_name=s.service_name,
    )
    monitor = HealthMonitor(store, interval_sec=float(s.health_interval_sec))
    return Runtime(bus=bus, worker=worker, recorder=recorder, monitor=monitor)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        log.info("worker_enhancer_signal", extra={"payload": {"signal": signum}})
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def run(stop: threading.Event) -> None:
    s = get_settings()
    rt = build_runtime()
    rt.worker.start()
    rt.monitor.start()
    log.info(
        "worker_enhancer_started",
        extra={
            "payload": {
                "queue": Q_ENHANCE,
                "concurrency": int(s.worker_concurrency),
                "queue_mode": s.queue_mode,
            }
        },
    )

    queues = [rt.worker.queue, get_queue(Q_DISPATCH)]
    try:
        while not stop.wait(_METRICS_REFRESH_SEC):
            if s.metrics_enabled:
                refresh_queue_metrics(queues, rt.recorder.store)
    finally:
        rt.monitor.stop(timeout=1.0)
        rt.worker.stop(timeout=_SHUTDOWN_TIMEOUT_SEC)
        rt.bus.remove_all()
        close_redis_client()
        log.info("worker_enhancer_stopped")


def main() -> None:
    setup_observability()
    s = get_settings()
    try:
        enforce_startup_readiness(service_name=s.service_name)
    except StartupError as e:
        log.critical(
            "worker_enhancer_startup_failed",
            extra={"payload": {"err": e.message, "details": e.details}},
        )
        close_redis_client()
        raise SystemExit(1) from e

    stop = threading.Event()
    _install_signal_handlers(stop)
    run(stop)


if __name__ == "__main__":
    main()
