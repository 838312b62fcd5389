"""
Централизованная конфигурация проекта (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- любое поле можно переопределить из файла через <ALIAS>_FILE (docker secrets)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field, TypeAdapter
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    app_env: str = Field(default="dev", alias="APP_ENV")
    service_name: str = Field(default="worker-enhancer", alias="SERVICE_NAME")

    # -------------------------------------------------------------------------
    # Redis / очереди
    # -------------------------------------------------------------------------
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    queue_mode: str = Field(default="redis", alias="QUEUE_MODE")  # redis|inline
    redis_connect_timeout_sec: float = Field(default=5.0, alias="REDIS_CONNECT_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------
    worker_concurrency: int = Field(default=4, alias="WORKER_CONCURRENCY")
    worker_block_timeout_sec: int = Field(default=1, alias="WORKER_BLOCK_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Gates (cooldown / burst dedupe)
    # -------------------------------------------------------------------------
    cooldown_ms: int = Field(default=750, alias="COOLDOWN_MS")
    dedupe_window_ms: int = Field(default=2000, alias="DEDUPE_WINDOW_MS")
    default_persona_name: str = Field(default="Proxy", alias="DEFAULT_PERSONA_NAME")

    # -------------------------------------------------------------------------
    # Retry / retention
    # -------------------------------------------------------------------------
    job_attempts: int = Field(default=3, alias="JOB_ATTEMPTS")
    retry_backoff_ms: int = Field(default=1000, alias="RETRY_BACKOFF_MS")
    retry_backoff_max_ms: int = Field(default=4000, alias="RETRY_BACKOFF_MAX_MS")
    job_keep_completed: int = Field(default=500, alias="JOB_KEEP_COMPLETED")
    job_keep_failed: int = Field(default=500, alias="JOB_KEEP_FAILED")
    dlq_keep: int = Field(default=1000, alias="DLQ_KEEP")
    # аренда задачи в active; должна быть больше самой долгой попытки
    job_lock_ms: int = Field(default=30000, alias="JOB_LOCK_MS")

    # -------------------------------------------------------------------------
    # Health / metrics
    # -------------------------------------------------------------------------
    health_interval_sec: float = Field(default=30.0, alias="HEALTH_INTERVAL_SEC")
    metrics_enabled: bool = Field(default=False, alias="METRICS_ENABLED")
    metrics_port: int = Field(default=9108, alias="METRICS_PORT")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)


def _apply_file_overrides(settings: Settings) -> None:
    alias_to_field = {}
    for name, field in Settings.model_fields.items():
        alias = field.alias or name
        alias_to_field[str(alias)] = name
        alias_to_field[str(name)] = name

    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        target = alias_to_field.get(base)
        if not target:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except Exception as e:
            logging.getLogger("persona-relay").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        annotation = Settings.model_fields[target].annotation
        setattr(settings, target, TypeAdapter(annotation).validate_python(raw.strip()))


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
