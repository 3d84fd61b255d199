"""Tests for analytics configuration."""

import warnings

import pytest

from rental_analytics.config import AnalyticsConfig, ConfigError


def make_config(**overrides):
    values = {
        "supabase_url": "https://abc.supabase.co/",
        "supabase_anon_key": "anon",
        "supabase_service_role_key": "service",
    }
    values.update(overrides)
    return AnalyticsConfig(**values)


class TestValidation:
    """Test config validation and defaults."""

    def test_defaults(self):
        """Unset fields take their documented defaults."""
        config = make_config()
        assert config.supabase_url == "https://abc.supabase.co"
        assert config.bounce_threshold_seconds == 10
        assert config.page_dwell_seconds == 0.15
        assert config.car_dwell_seconds == 2.0
        assert config.excluded_path_prefixes == ("/admin", "/api")
        assert config.admin_role == "admin"
        assert config.tracking_enabled is True

    def test_derived_urls(self):
        """REST and auth URLs derive from the project URL."""
        config = make_config()
        assert config.rest_url == "https://abc.supabase.co/rest/v1"
        assert config.auth_url == "https://abc.supabase.co/auth/v1"

    @pytest.mark.parametrize("url", ["", "   ", "abc.supabase.co", "ftp://abc"])
    def test_bad_url(self, url):
        """Empty or non-http project URLs are rejected."""
        with pytest.raises(ConfigError):
            make_config(supabase_url=url)

    def test_missing_anon_key(self):
        """The anon key is required."""
        with pytest.raises(ConfigError, match="supabase_anon_key"):
            make_config(supabase_anon_key="")

    def test_negative_threshold(self):
        """A negative bounce threshold is rejected."""
        with pytest.raises(ConfigError):
            make_config(bounce_threshold_seconds=-1)

    def test_config_error_is_value_error(self):
        """ConfigError is a ValueError."""
        with pytest.raises(ValueError):
            make_config(supabase_url="")

    def test_prefixes_normalized_to_tuple(self):
        """Excluded prefixes are stored as a tuple."""
        assert make_config(excluded_path_prefixes=["/admin"]).excluded_path_prefixes == ("/admin",)


class TestReportKey:
    """Test the key used for report reads."""

    def test_prefers_service_key(self):
        """The service role key is used when set."""
        assert make_config().report_key == "service"

    def test_falls_back_to_anon_key_with_warning(self):
        """Without a service key, reads use the anon key and warn."""
        with pytest.warns(UserWarning, match="service role key"):
            config = make_config(supabase_service_role_key=None)
        assert config.report_key == "anon"

    def test_no_warning_with_service_key(self):
        """No warning when the service key is set."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            make_config()


class TestFromEnv:
    """Test loading config from the environment."""

    def test_reads_environment(self, monkeypatch):
        """Environment variables fill the config."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-service")
        monkeypatch.setenv("GEOLOCATION_URL", "https://geo.test/json")
        monkeypatch.setenv("ANALYTICS_TRACKING_ENABLED", "false")

        config = AnalyticsConfig.from_env()

        assert config.supabase_url == "https://env.supabase.co"
        assert config.supabase_anon_key == "env-anon"
        assert config.report_key == "env-service"
        assert config.geolocation_url == "https://geo.test/json"
        assert config.tracking_enabled is False

    def test_overrides_win(self, monkeypatch):
        """Keyword overrides beat the environment."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-service")
        config = AnalyticsConfig.from_env(admin_role="owner", supabase_anon_key="other")
        assert config.admin_role == "owner"
        assert config.supabase_anon_key == "other"

    def test_missing_environment(self, monkeypatch):
        """Missing required variables raise ConfigError."""
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
        with pytest.raises(ConfigError):
            AnalyticsConfig.from_env()

    @pytest.mark.parametrize("value,expected", [("1", True), ("yes", True), ("off", False), ("", True)])
    def test_tracking_flag(self, monkeypatch, value, expected):
        """The tracking flag accepts common truthy and falsy strings."""
        monkeypatch.setenv("SUPABASE_URL", "https://env.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-anon")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "env-service")
        monkeypatch.setenv("ANALYTICS_TRACKING_ENABLED", value)
        assert AnalyticsConfig.from_env().tracking_enabled is expected
