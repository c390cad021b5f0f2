import pytest
from pydantic import ValidationError

from governor.core.config import Settings
from governor.models import GovernorOptions


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.rate_limit == 100
    assert settings.window_seconds == 60.0
    assert settings.strategy == "sliding_window"
    assert settings.max_retries == 3
    assert settings.failure_threshold == 5
    assert settings.redis_enabled is False


def test_reads_prefixed_environment(monkeypatch) -> None:
    monkeypatch.setenv("GOVERNOR_RATE_LIMIT", "20")
    monkeypatch.setenv("GOVERNOR_WINDOW_SECONDS", "1.5")
    monkeypatch.setenv("GOVERNOR_STRATEGY", "header")
    monkeypatch.setenv("GOVERNOR_JITTER", "false")

    settings = Settings(_env_file=None)

    assert settings.rate_limit == 20
    assert settings.window_seconds == 1.5
    assert settings.strategy == "header"
    assert settings.jitter is False


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("GOVERNOR_RATE_LIMIT", "0"),
        ("GOVERNOR_WINDOW_SECONDS", "0"),
        ("GOVERNOR_MAX_RETRIES", "-1"),
        ("GOVERNOR_EXPONENTIAL_BASE", "0.5"),
        ("GOVERNOR_STRATEGY", "token_bucket"),
    ],
)
def test_rejects_invalid_values(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_max_delay_must_cover_base_delay(monkeypatch) -> None:
    monkeypatch.setenv("GOVERNOR_BASE_DELAY", "5")
    monkeypatch.setenv("GOVERNOR_MAX_DELAY", "2")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_options_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("GOVERNOR_RATE_LIMIT", "7")
    monkeypatch.setenv("GOVERNOR_JITTER", "false")
    monkeypatch.setenv("GOVERNOR_MAX_QUEUE_SIZE", "3")

    options = GovernorOptions.from_settings(Settings(_env_file=None))

    assert options.limit == 7
    assert options.jitter_enabled is False
    assert options.max_queue_size == 3


def test_options_are_frozen() -> None:
    options = GovernorOptions()

    with pytest.raises(ValidationError):
        options.limit = 5


def test_options_build_backoff_policy() -> None:
    options = GovernorOptions(max_retries=1, base_delay=0.2, max_delay=0.5, jitter_enabled=False)

    policy = options.backoff_policy()

    assert policy.max_retries == 1
    assert policy.calculate_delay(0) == 0.2
    assert policy.calculate_delay(5) == 0.5
