import pytest
from pydantic import ValidationError

from flowlimiter.core.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)
    assert settings.store_backend == "redis"
    assert settings.leaky_bucket_timeout_seconds == 6
    assert settings.token_bucket_timeout_seconds == 60
    assert settings.sliding_window_expire_grace_seconds == 1
    assert settings.rate_limit_fail_open is False


def test_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("STORE_BACKEND", "Memory")
    monkeypatch.setenv("TOKEN_BUCKET_DEFAULT_BURST", "30")

    settings = Settings(_env_file=None)
    assert settings.store_backend == "memory"
    assert settings.token_bucket_default_burst == 30


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("store_backend", "memcached"),
        ("log_format", "xml"),
        ("leaky_bucket_default_burst", 0),
        ("token_bucket_timeout_seconds", -1),
        ("sliding_window_expire_grace_seconds", -1),
        ("redis_socket_timeout", 0),
    ],
)
def test_rejects_invalid_values(field: str, value) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})
