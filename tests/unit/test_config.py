from __future__ import annotations

from persona_relay.common.config import Settings


def test_defaults(monkeypatch) -> None:
    for key in ("REDIS_URL", "LOG_LEVEL", "COOLDOWN_MS", "QUEUE_MODE"):
        monkeypatch.delenv(key, raising=False)
    s = Settings(_env_file=None)
    assert s.redis_url is None
    assert s.queue_mode == "redis"
    assert s.log_level == "INFO"
    assert s.cooldown_ms == 750
    assert s.dedupe_window_ms == 2000
    assert s.job_attempts == 3
    assert s.retry_backoff_ms == 1000
    assert s.health_interval_sec == 30.0
    assert s.redis_connect_timeout_sec == 5.0
    assert s.default_persona_name == "Proxy"


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("COOLDOWN_MS", "1500")
    s = Settings(_env_file=None)
    assert s.redis_url == "redis://cache:6379/1"
    assert s.log_level == "debug"
    assert s.cooldown_ms == 1500


def test_file_override(monkeypatch, tmp_path) -> None:
    secret = tmp_path / "redis_url"
    secret.write_text("redis://secret-host:6379/0\n", encoding="utf-8")
    dedupe = tmp_path / "dedupe"
    dedupe.write_text("3000", encoding="utf-8")
    monkeypatch.setenv("REDIS_URL_FILE", str(secret))
    monkeypatch.setenv("DEDUPE_WINDOW_MS_FILE", str(dedupe))
    s = Settings(_env_file=None)
    assert s.redis_url == "redis://secret-host:6379/0"
    assert s.dedupe_window_ms == 3000
