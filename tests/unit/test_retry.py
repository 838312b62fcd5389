from persona_relay.common.config import get_settings
from persona_relay.queue.retry import backoff_delay_ms, default_job_options, has_attempts_left


def test_backoff_is_exponential():
    assert backoff_delay_ms(1, 1000) == 1000
    assert backoff_delay_ms(2, 1000) == 2000
    assert backoff_delay_ms(3, 1000) == 4000


def test_backoff_respects_cap_and_zero_base():
    assert backoff_delay_ms(5, 1000, 4000) == 4000
    assert backoff_delay_ms(3, 0) == 0
    assert backoff_delay_ms(0, 1000) == 0


def test_has_attempts_left():
    assert has_attempts_left(1, 3) is True
    assert has_attempts_left(2, 3) is True
    assert has_attempts_left(3, 3) is False


def test_default_job_options_follow_settings(monkeypatch):
    s = get_settings()
    monkeypatch.setattr(s, "job_attempts", 5)
    monkeypatch.setattr(s, "retry_backoff_ms", 250)
    opts = default_job_options(job_id="m-1")
    assert opts.job_id == "m-1"
    assert opts.attempts == 5
    assert opts.backoff_ms == 250


def test_default_job_options_defaults():
    opts = default_job_options()
    assert opts.job_id is None
    assert opts.attempts == 3
    assert opts.backoff_ms == 1000
