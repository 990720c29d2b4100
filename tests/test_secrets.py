"""
Tests for secret list resolution.
"""

import pytest

from config.settings import Settings
from esp.errors import ConfigurationError
from esp.secrets import (
    configured_oauth_state_secrets,
    configured_token_secrets,
    require_oauth_state_secrets,
    require_token_secrets,
)


class TestTokenSecrets:
    def test_newest_first_then_previous(self):
        settings = Settings(esp_token_secret="a", esp_token_secrets_previous="b, c")
        assert configured_token_secrets(settings) == ["a", "b", "c"]

    def test_trims_and_dedupes(self):
        settings = Settings(esp_token_secret=" a ", esp_token_secrets_previous="a,,b , b")
        assert configured_token_secrets(settings) == ["a", "b"]

    def test_require_raises_when_empty(self):
        settings = Settings(esp_token_secret="", esp_token_secrets_previous="")
        with pytest.raises(ConfigurationError):
            require_token_secrets(settings)


class TestOAuthStateSecrets:
    def test_falls_back_to_token_secrets(self):
        settings = Settings(
            esp_oauth_state_secret="",
            esp_oauth_state_secrets_previous="",
            esp_token_secret="tok",
        )
        assert configured_oauth_state_secrets(settings) == ["tok"]

    def test_state_secrets_come_first(self):
        settings = Settings(
            esp_oauth_state_secret="s1",
            esp_oauth_state_secrets_previous="s0",
            esp_token_secret="tok",
        )
        assert configured_oauth_state_secrets(settings) == ["s1", "s0", "tok"]

    def test_require_raises_when_nothing_configured(self):
        settings = Settings(
            esp_oauth_state_secret="",
            esp_oauth_state_secrets_previous="",
            esp_token_secret="",
            esp_token_secrets_previous="",
        )
        with pytest.raises(ConfigurationError):
            require_oauth_state_secrets(settings)
