"""Tests for continuum.crypto -- snapshot encryption at rest and key management."""
import stat

import pytest

from continuum.crypto import (
    _get_or_create_key,
    _key_path,
    decrypt,
    encrypt,
    is_enabled,
    reset_crypto_state,
    secure_connect,
)


@pytest.fixture(autouse=True)
def _reset_crypto():
    """Reset crypto state before and after each test."""
    reset_crypto_state()
    yield
    reset_crypto_state()


# ============================================================================
# is_enabled
# ============================================================================


class TestIsEnabled:
    def test_enabled_by_default(self, monkeypatch):
        monkeypatch.delenv("CONTINUUM_ENCRYPT", raising=False)
        assert is_enabled() is True

    @pytest.mark.parametrize("value", ["1", "true", "yes", ""])
    def test_enabled_values(self, monkeypatch, value):
        monkeypatch.setenv("CONTINUUM_ENCRYPT", value)
        assert is_enabled() is True

    @pytest.mark.parametrize("value", ["0", "false", "no", " NO "])
    def test_disabled_values(self, monkeypatch, value):
        monkeypatch.setenv("CONTINUUM_ENCRYPT", value)
        assert is_enabled() is False


# ============================================================================
# Plaintext passthrough (encryption disabled)
# ============================================================================


class TestPlaintextPassthrough:
    def test_encrypt_returns_plaintext_when_disabled(self, monkeypatch):
        monkeypatch.setenv("CONTINUUM_ENCRYPT", "0")
        assert encrypt('{"identity": {}}') == '{"identity": {}}'

    def test_decrypt_returns_plaintext_without_prefix(self):
        assert decrypt("just plain text") == "just plain text"


# ============================================================================
# Key management
# ============================================================================


class TestKeyManagement:
    def test_key_created_on_first_use(self, tmp_continuum_home):
        key_path = tmp_continuum_home / ".key"
        assert not key_path.exists()
        key = _get_or_create_key()
        assert key_path.exists()
        assert len(key) > 0
        assert key_path.stat().st_mode & (stat.S_IRWXG | stat.S_IRWXO) == 0

    def test_key_reused_on_second_call(self, tmp_continuum_home):
        assert _get_or_create_key() == _get_or_create_key()

    def test_key_path_uses_continuum_home(self, tmp_continuum_home):
        assert _key_path() == tmp_continuum_home / ".key"


# ============================================================================
# Encrypt/decrypt roundtrip
# ============================================================================


class TestEncryptDecryptRoundtrip:
    @pytest.fixture(autouse=True)
    def _enable_encryption(self, monkeypatch, tmp_continuum_home):
        monkeypatch.setenv("CONTINUUM_ENCRYPT", "1")
        reset_crypto_state()

    def test_roundtrip(self):
        original = '{"working_memory": {"current_focus": ["relay"]}}'
        encrypted = encrypt(original)
        assert encrypted.startswith("ENC:")
        assert encrypted != original
        assert decrypt(encrypted) == original

    def test_roundtrip_unicode(self):
        original = "Unicode content: café ☃ \U0001f680"
        assert decrypt(encrypt(original)) == original

    def test_wrong_key_raises(self, tmp_continuum_home):
        encrypted = encrypt("secret")
        (tmp_continuum_home / ".key").unlink()
        reset_crypto_state()
        with pytest.raises(ValueError, match="Decryption failed"):
            decrypt(encrypted)


# ============================================================================
# secure_connect
# ============================================================================


def test_secure_connect_creates_private_file(tmp_path):
    path = tmp_path / "store.db"
    conn = secure_connect(path)
    conn.close()
    assert path.stat().st_mode & (stat.S_IRWXG | stat.S_IRWXO) == 0


def test_secure_connect_tightens_existing_file(tmp_path):
    path = tmp_path / "store.db"
    path.touch()
    path.chmod(0o644)
    secure_connect(path).close()
    assert path.stat().st_mode & (stat.S_IRWXG | stat.S_IRWXO) == 0
