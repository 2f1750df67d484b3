import base64
import json

import pytest

from stockbook.core.exceptions import EncryptionError
from stockbook.infrastructure.credential_store import StoredCredentials
from stockbook.infrastructure.encryption import TokenCipher, is_valid_github_token

TOKEN = "ghp_" + "a" * 36


def envelope(encrypted: str) -> dict:
    return json.loads(base64.b64decode(encrypted))


class TestTokenCipher:
    def test_machine_round_trip(self, cipher):
        encrypted = cipher.encrypt(TOKEN)

        assert TOKEN not in encrypted
        assert envelope(encrypted)["method"] == "machine"
        assert envelope(encrypted)["salt"] is None
        assert cipher.decrypt(encrypted) == TOKEN

    def test_password_round_trip(self, cipher):
        encrypted = cipher.encrypt(TOKEN, password="hunter2")

        assert envelope(encrypted)["method"] == "password"
        assert cipher.decrypt(encrypted, password="hunter2") == TOKEN

    def test_each_encryption_uses_a_fresh_iv(self, cipher):
        assert cipher.encrypt(TOKEN) != cipher.encrypt(TOKEN)

    def test_password_required(self, cipher):
        encrypted = cipher.encrypt(TOKEN, password="hunter2")

        with pytest.raises(EncryptionError, match="Password required"):
            cipher.decrypt(encrypted)

    def test_wrong_password(self, cipher):
        encrypted = cipher.encrypt(TOKEN, password="hunter2")

        with pytest.raises(EncryptionError):
            cipher.decrypt(encrypted, password="hunter3")

    def test_other_machine_cannot_decrypt(self, cipher):
        encrypted = cipher.encrypt(TOKEN)

        with pytest.raises(EncryptionError):
            TokenCipher(fingerprint="another-machine", iterations=1000).decrypt(encrypted)

    def test_malformed_envelope(self, cipher):
        with pytest.raises(EncryptionError):
            cipher.decrypt("not-base64-json")


def test_token_shape():
    assert is_valid_github_token(TOKEN)
    assert not is_valid_github_token("ghp_short")
    assert not is_valid_github_token("x" * 39 + "-")


class TestCredentialStore:
    def test_update_merges_fields(self, credential_store):
        credential_store.update(owner="acme", repo="books")
        credential_store.update(data_file="shop.json")

        assert credential_store.load() == StoredCredentials(owner="acme", repo="books", data_file="shop.json")

    def test_unreadable_file_loads_empty(self, credential_store):
        credential_store.path.write_text("{oops", encoding="utf-8")

        assert credential_store.load() == StoredCredentials()

    def test_clear(self, credential_store):
        credential_store.update(owner="acme")
        credential_store.clear()

        assert not credential_store.path.exists()
        credential_store.clear()
