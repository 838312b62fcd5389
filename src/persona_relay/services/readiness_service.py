"""
Runtime readiness checks: конфигурация + подключение к хранилищу до старта воркеров.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from persona_relay.common.config import get_settings
from persona_relay.common.errors import StartupError
from persona_relay.common.logging import get_project_logger
from persona_relay.queue.claims import ClaimStore, get_claim_store

log = get_project_logger()

_QUEUE_MODES = {"redis", "inline"}


@dataclass
class ReadinessIssue:
    severity: str  # error|warning
    code: str
    message: str


@dataclass
class ReadinessState:
    ready: bool
    issues: list[ReadinessIssue]


def _is_prod_env(app_env: str | None) -> bool:
    env = (app_env or "").strip().lower()
    return env in {"prod", "production"}


def evaluate_readiness() -> ReadinessState:
    s = get_settings()
    issues: list[ReadinessIssue] = []
    mode = (s.queue_mode or "").strip().lower()

    if mode not in _QUEUE_MODES:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="queue_mode_invalid",
                message=f"QUEUE_MODE={s.queue_mode!r} не поддерживается (redis|inline)",
            )
        )

    if mode == "redis" and not (s.redis_url or "").strip():
        issues.append(
            ReadinessIssue(
                severity="error",
                code="redis_url_empty",
                message="QUEUE_MODE=redis требует REDIS_URL",
            )
        )

    if mode == "inline" and _is_prod_env(s.app_env):
        issues.append(
            ReadinessIssue(
                severity="error",
                code="inline_queue_in_prod",
                message="QUEUE_MODE=inline запрещен в prod",
            )
        )

    if int(s.worker_concurrency) < 1:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="worker_concurrency_invalid",
                message="WORKER_CONCURRENCY должен быть >= 1",
            )
        )

    if int(s.job_attempts) < 1:
        issues.append(
            ReadinessIssue(
                severity="error",
                code="job_attempts_invalid",
                message="JOB_ATTEMPTS должен быть >= 1",
            )
        )

    if int(s.cooldown_ms) <= 0 or int(s.dedupe_window_ms) <= 0:
        issues.append(
            ReadinessIssue(
                severity="warning",
                code="gate_window_disabled",
                message="COOLDOWN_MS/DEDUPE_WINDOW_MS <= 0: окно сводится к 1ms",
            )
        )

    ready = all(i.severity != "error" for i in issues)
    return ReadinessState(ready=ready, issues=issues)


def probe_store(store: ClaimStore, *, timeout_sec: float) -> None:
    """
    Пинг хранилища с жёстким дедлайном. Любая ошибка или таймаут -> StartupError.
    """
    result: dict[str, object] = {}

    def _ping() -> None:
        try:
            result["ok"] = bool(store.ping())
        except Exception as e:
            result["err"] = e

    t = threading.Thread(target=_ping, name="startup-probe", daemon=True)
    t.start()
    t.join(timeout_sec)

    if t.is_alive():
        raise StartupError(
            "хранилище не ответило за отведённое время",
            details={"timeout_sec": timeout_sec},
        )
    if "err" in result:
        err = result["err"]
        raise StartupError(
            "не удалось подключиться к хранилищу",
            details={"err": str(err)[:200]},
        ) from err  # type: ignore[misc]
    if not result.get("ok"):
        raise StartupError("хранилище вернуло отрицательный ping")


def enforce_startup_readiness(
    *, service_name: str, store: ClaimStore | None = None
) -> ReadinessState:
    s = get_settings()
    state = evaluate_readiness()
    errors = [i for i in state.issues if i.severity == "error"]

    if not errors:
        try:
            probe_store(store or get_claim_store(), timeout_sec=float(s.redis_connect_timeout_sec))
        except StartupError as e:
            errors.append(
                ReadinessIssue(severity="error", code="store_unreachable", message=e.message)
            )
            state = ReadinessState(ready=False, issues=[*state.issues, *errors[-1:]])

    if errors:
        log.error(
            "startup_readiness_failed",
            extra={
                "payload": {
                    "service": service_name,
                    "app_env": s.app_env,
                    "error_codes": [e.code for e in errors],
                }
            },
        )
        msg = ", ".join(e.code for e in errors)
        raise StartupError(
            f"startup readiness failed for {service_name}: {msg}",
            details={"issues": [e.message for e in errors]},
        )

    log.info(
        "startup_readiness_ok",
        extra={
            "payload": {
                "service": service_name,
                "app_env": s.app_env,
                "queue_mode": s.queue_mode,
                "warnings": [i.code for i in state.issues],
            }
        },
    )
    return state
