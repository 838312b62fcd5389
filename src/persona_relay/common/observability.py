"""
Observability bootstrap.

Назначение:
- централизованно включить логирование и метрики на старте процесса
- не тянуть лишние зависимости внутрь apps/*
"""

from __future__ import annotations

from persona_relay.common.config import get_settings
from persona_relay.common.logging import get_project_logger, setup_logging
from persona_relay.common.metrics import start_metrics_server

log = get_project_logger()


def setup_observability() -> None:
    """
    Вызывается на старте воркера.
    Логирование всегда, /metrics только при METRICS_ENABLED=true.
    """
    setup_logging()
    s = get_settings()
    if s.metrics_enabled:
        start_metrics_server(int(s.metrics_port))
    log.info(
        "observability_ready",
        extra={"payload": {"service": s.service_name, "metrics": bool(s.metrics_enabled)}},
    )
