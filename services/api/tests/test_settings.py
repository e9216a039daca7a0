import pytest
from pydantic import ValidationError

from app.services.geo_cache import GeoCacheConfig
from app.services.lifecycle import LifecycleConfig
from app.services.place_lookup import ResolverConfig
from app.settings import Settings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of these tests
    monkeypatch.chdir(tmp_path)


def test_defaults():
    """Test settings defaults."""
    settings = Settings()
    assert settings.map_lifecycle_enabled is False
    assert settings.store_backend == "redis"
    assert settings.event_weights == {"endorsement": 1.0, "renewal": 0.6, "downvote": -0.3}

    config = LifecycleConfig.from_settings(settings)
    assert config.enabled is False
    assert config.recent_window_days == 90
    assert config.trending_window_days == 14
    assert config.classics_min_age_days == 180

    geo = GeoCacheConfig.from_settings(settings)
    assert geo.max_distance_meters == 150.0
    assert geo.coarse_candidate_limit == 8

    resolver = ResolverConfig.from_settings(settings)
    assert resolver.max_lookups_per_day == 50
    assert resolver.quota_fail_open is True


def test_env_overrides(monkeypatch):
    """Test environment variable overrides."""
    monkeypatch.setenv("FEATURE_MAP_LIFECYCLE", "true")
    monkeypatch.setenv("MAP_RECENT_WINDOW_DAYS", "30")
    monkeypatch.setenv("MAP_TRENDING_WINDOW_DAYS", "10")
    monkeypatch.setenv("MAP_EVENT_WEIGHTS", '{"Downvote": -1}')
    monkeypatch.setenv("GOOGLE_PIN_INTEL_MAX_NEW_PINS_PER_DAY", "7")
    monkeypatch.setenv("QUOTA_FAIL_OPEN", "false")
    monkeypatch.setenv("STORE_BACKEND", " Memory ")

    settings = Settings()
    assert settings.map_lifecycle_enabled is True
    assert settings.recent_window_days == 30
    assert settings.trending_window_days == 10
    assert settings.event_weights["downvote"] == -1.0
    assert settings.event_weights["endorsement"] == 1.0
    assert settings.max_external_lookups_per_day == 7
    assert settings.quota_fail_open is False
    assert settings.store_backend == "memory"


def test_invalid_values_are_rejected(monkeypatch):
    """Test invalid settings fail validation."""
    monkeypatch.setenv("STORE_BACKEND", "mongo")
    with pytest.raises(ValidationError):
        Settings()

    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("MAP_DECAY_HALF_LIFE_DAYS", "0")
    with pytest.raises(ValidationError):
        Settings()


def test_database_url_driver(monkeypatch):
    """Test DATABASE_URL gets the asyncpg driver and managed-host args."""
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db.railway.internal:5432/pins")
    settings = Settings()
    assert settings.async_database_url.startswith("postgresql+asyncpg://")
    assert settings.asyncpg_connect_args == {"ssl": False, "timeout": 20}


def test_database_url_without_managed_host(monkeypatch):
    """Test plain hosts get no extra connect args."""
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost:5432/pins")
    settings = Settings()
    assert settings.async_database_url == "postgresql+asyncpg://u:p@localhost:5432/pins"
    assert settings.asyncpg_connect_args == {}

    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db.internal:5432/pins")
    assert Settings().async_database_url == "postgresql+asyncpg://u:p@db.internal:5432/pins"
