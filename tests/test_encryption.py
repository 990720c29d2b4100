"""
Tests for credential encryption and key rotation.
"""

import pytest

from config.settings import Settings
from esp.encryption import decrypt, decrypt_token, derive_key, encrypt, encrypt_token, rotate
from esp.errors import ConfigurationError, CredentialDecryptionError


class TestEncryptDecrypt:
    def test_round_trip(self):
        token = encrypt("ghl-access-token", "secret-a")
        assert token != "ghl-access-token"
        assert decrypt(token, ["secret-a"]) == "ghl-access-token"

    def test_unicode_plaintext(self):
        token = encrypt("clé-ünïcode", "secret-a")
        assert decrypt(token, ["secret-a"]) == "clé-ünïcode"

    def test_previous_secret_still_decrypts(self):
        token = encrypt("old", "secret-old")
        assert decrypt(token, ["secret-new", "secret-old"]) == "old"

    def test_unknown_secret_fails(self):
        token = encrypt("value", "secret-a")
        with pytest.raises(CredentialDecryptionError):
            decrypt(token, ["secret-b"])

    def test_garbage_ciphertext_fails(self):
        with pytest.raises(CredentialDecryptionError):
            decrypt("not-a-fernet-token", ["secret-a"])

    def test_no_secrets_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            decrypt("anything", [])

    def test_encrypt_requires_secret(self):
        with pytest.raises(ConfigurationError):
            encrypt("value", "")

    def test_derived_key_is_stable(self):
        assert derive_key("abc") == derive_key("abc")
        assert derive_key("abc") != derive_key("abd")


class TestRotate:
    def test_rotate_moves_ciphertext_to_newest_key(self):
        token = encrypt("value", "secret-old")
        rotated = rotate(token, ["secret-new", "secret-old"])
        assert decrypt(rotated, ["secret-new"]) == "value"

    def test_rotate_rejects_foreign_ciphertext(self):
        token = encrypt("value", "secret-other")
        with pytest.raises(CredentialDecryptionError):
            rotate(token, ["secret-new", "secret-old"])


class TestConfiguredTokens:
    def test_uses_configured_settings(self):
        settings = Settings(esp_token_secret="new", esp_token_secrets_previous="old")
        old_settings = Settings(esp_token_secret="old")
        token = encrypt_token("value", old_settings)
        assert decrypt_token(token, settings) == "value"

    def test_missing_secret_raises(self):
        settings = Settings(esp_token_secret="", esp_token_secrets_previous="")
        with pytest.raises(ConfigurationError):
            encrypt_token("value", settings)
