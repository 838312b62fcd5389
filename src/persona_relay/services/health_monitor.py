"""
Health monitor: периодическая проверка живости хранилища.

Чисто наблюдательный: ошибка пишется в лог (error) и в метрику,
воркеры не останавливаются, процесс не завершается.
"""

from __future__ import annotations

import threading

from persona_relay.common.logging import get_project_logger
from persona_relay.common.metrics import HEALTH_PROBES_TOTAL
from persona_relay.queue.claims import ClaimStore

log = get_project_logger()


class HealthMonitor:
    def __init__(self, store: ClaimStore, *, interval_sec: float = 30.0) -> None:
        self._store = store
        self._interval_sec = max(0.1, float(interval_sec))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def probe_once(self) -> bool:
        try:
            ok = bool(self._store.ping())
        except Exception as e:
            HEALTH_PROBES_TOTAL.labels(result="failed").inc()
            log.error("health_probe_failed", extra={"payload": {"err": str(e)[:200]}})
            return False
        if not ok:
            HEALTH_PROBES_TOTAL.labels(result="failed").inc()
            log.error("health_probe_failed", extra={"payload": {"err": "ping returned false"}})
            return False
        HEALTH_PROBES_TOTAL.labels(result="ok").inc()
        log.debug("health_probe_ok")
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self._interval_sec):
            self.probe_once()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="health-monitor", daemon=True)
        self._thread.start()
        log.info("health_monitor_started", extra={"payload": {"interval_sec": self._interval_sec}})

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
