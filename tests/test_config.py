"""Tests for library settings."""

import pytest
from pydantic import ValidationError

from webjose.config import Settings


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        """Test the default settings values."""
        monkeypatch.delenv("WEBJOSE_PBES2_ITERATIONS", raising=False)

        settings = Settings()

        assert settings.pbes2_iterations == 4096
        assert settings.pbes2_max_iterations == 1_000_000
        assert settings.deflate_level == 9

    def test_environment_override(self, monkeypatch):
        """Test that WEBJOSE_ environment variables override defaults."""
        monkeypatch.setenv("WEBJOSE_PBES2_ITERATIONS", "10000")
        monkeypatch.setenv("WEBJOSE_REMOTE_CACHE_TTL_SECONDS", "60")

        settings = Settings()

        assert settings.pbes2_iterations == 10000
        assert settings.remote_cache_ttl_seconds == 60

    def test_iterations_above_maximum(self):
        """Test that the default iteration count cannot exceed the decrypt limit."""
        with pytest.raises(ValidationError):
            Settings(pbes2_iterations=2000, pbes2_max_iterations=1000)

    def test_deflate_level_range(self):
        """Test that the DEFLATE level must lie between 0 and 9."""
        with pytest.raises(ValidationError):
            Settings(deflate_level=10)
