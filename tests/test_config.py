from config import Settings


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.app_name == "VFR Window Planner"
    assert settings.forecast_model == "gfs"
    assert settings.forecast_cache_ttl == 300
    assert settings.forecast_cache_max_entries == 100
    assert settings.weather_cache_interval_minutes == 60
    assert settings.vfr_scan_interval_minutes == 60
    assert settings.vfr_refine_precision_minutes == 30
    assert settings.vfr_max_windows == 5


def test_settings_normalizes_cors_from_string():
    settings = Settings(cors_origins="http://example.com, http://localhost")
    assert settings.cors_origins == ["http://example.com", "http://localhost"]


def test_settings_handles_case_insensitive_env(monkeypatch):
    monkeypatch.setenv("FORECAST_MODEL", "iconEu")
    monkeypatch.setenv("vfr_max_concurrent", "8")
    settings = Settings()
    assert settings.forecast_model == "iconEu"
    assert settings.vfr_max_concurrent == 8
