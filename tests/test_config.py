import pytest

from facility_scraper.config import RetryConfig, ScraperConfig, Settings


def test_settings_defaults_build_config():
    config = Settings().to_config()

    assert config.concurrency == 5
    assert config.flush_every == 1
    assert config.retry.max_retries == 3
    assert config.retry.strategy == "linear"
    assert config.http.timeout == config.retry.attempt_timeout


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("SCRAPER_CONCURRENCY", "8")
    monkeypatch.setenv("SCRAPER_MAX_RETRIES", "5")
    monkeypatch.setenv("SCRAPER_REQUEST_DELAY", "2.5")
    monkeypatch.setenv("SCRAPER_DOWNLOAD_REPORTS", "true")

    config = Settings().to_config()

    assert config.concurrency == 8
    assert config.retry.max_retries == 5
    assert config.rate_limit.initial_delay == 2.5
    assert config.download_reports is True


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("SCRAPER_CONCURRENCY", "8")

    config = Settings().to_config(concurrency=2, flush_every=None, attempt_timeout=10.0)

    assert config.concurrency == 2
    assert config.flush_every == 1
    assert config.retry.attempt_timeout == 10.0
    assert config.http.timeout == 10.0


@pytest.mark.parametrize("kwargs", [
    {"concurrency": 0},
    {"flush_every": 0},
    {"retry": RetryConfig(max_retries=-1)},
])
def test_invalid_config_rejected(kwargs):
    with pytest.raises(ValueError):
        ScraperConfig(**kwargs)


def test_zero_retries_allowed():
    config = ScraperConfig(retry=RetryConfig(max_retries=0))
    assert config.retry.max_retries == 0
