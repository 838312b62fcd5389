"""
Шина событий процесса (pub/sub внутри одного процесса).

Правила:
- явный список подписчиков, доставка по порядку подписки и последовательно
- без ретраев: ошибка подписчика логируется и не влияет
  ни на издателя, ни на остальных подписчиков
- wait_for() позволяет дождаться следующего подходящего события (с таймаутом)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from persona_relay.common.logging import get_project_logger

log = get_project_logger()

Listener = Callable[[dict[str, Any]], None]

# Имена событий, которые публикует пайплайн
EVT_JOB_COMPLETED = "job.completed"
EVT_JOB_FAILED = "job.failed"
EVT_MESSAGE_PROXIED = "message.proxied"


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._lock = threading.Lock()

    def on(self, event: str, fn: Listener) -> Callable[[], None]:
        """
        Подписка. Возвращает функцию отписки.
        """
        with self._lock:
            self._listeners.setdefault(event, []).append(fn)
        return lambda: self.off(event, fn)

    def once(self, event: str, fn: Listener) -> Callable[[], None]:
        def _wrapper(payload: dict[str, Any]) -> None:
            try:
                fn(payload)
            finally:
                self.off(event, _wrapper)

        return self.on(event, _wrapper)

    def off(self, event: str, fn: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event)
            if listeners and fn in listeners:
                listeners.remove(fn)

    def remove_all(self, event: str | None = None) -> None:
        with self._lock:
            if event is None:
                self._listeners.clear()
            else:
                self._listeners.pop(event, None)

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for fn in listeners:
            try:
                fn(payload)
            except Exception as e:
                log.error(
                    "event_listener_error",
                    extra={"payload": {"event": event, "err": str(e)[:200]}},
                    exc_info=True,
                )

    def wait_for(
        self,
        event: str,
        *,
        where: Callable[[dict[str, Any]], bool] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Блокирующе ждёт следующее событие (опционально по предикату).
        Бросает TimeoutError, если событие не пришло за timeout секунд.
        """
        done = threading.Event()
        box: dict[str, Any] = {}

        def _listener(payload: dict[str, Any]) -> None:
            if done.is_set():
                return
            if where is None or where(payload):
                box["payload"] = payload
                done.set()

        off = self.on(event, _listener)
        try:
            if not done.wait(timeout):
                raise TimeoutError(f"wait_for timeout on {event} after {timeout}s")
        finally:
            off()
        return box["payload"]
