"""Тесты локального key/value хранилища и шифрования."""
import pytest

from stayfocus.core.encryption import StorageEncryption, build_encryption, generate_key
from stayfocus.core.local_storage import LocalStorage


class TestEncryption:

    def test_encrypt_decrypt(self):
        encryption = StorageEncryption(generate_key())

        ciphertext = encryption.encrypt("секрет")

        assert ciphertext != "секрет"
        assert encryption.decrypt(ciphertext) == "секрет"

    def test_empty_string(self):
        encryption = StorageEncryption(generate_key())

        assert encryption.encrypt("") == ""
        assert encryption.decrypt("") == ""

    def test_empty_key(self):
        with pytest.raises(ValueError):
            StorageEncryption("")

    def test_wrong_key(self):
        ciphertext = StorageEncryption(generate_key()).encrypt("data")

        with pytest.raises(ValueError):
            StorageEncryption(generate_key()).decrypt(ciphertext)

    def test_build_encryption(self):
        assert build_encryption("") is None
        assert isinstance(build_encryption(generate_key()), StorageEncryption)


class TestLocalStorage:

    async def test_missing_key(self, local_storage):
        assert await local_storage.get_item("nothing") is None

    async def test_set_get_replace(self, local_storage):
        await local_storage.set_item("k", {"a": 1})
        await local_storage.set_item("k", {"a": 2, "текст": "да"})

        assert await local_storage.get_item("k") == {"a": 2, "текст": "да"}

    async def test_remove(self, local_storage):
        await local_storage.set_item("k", [1, 2])

        await local_storage.remove_item("k")

        assert await local_storage.get_item("k") is None

    async def test_encrypted_at_rest(self, db):
        storage = LocalStorage(db, StorageEncryption(generate_key()))

        await storage.set_item("k", {"token": "visible?"})

        row = await db.fetchone("SELECT value FROM local_storage WHERE key = 'k'")
        assert "visible?" not in row["value"]
        assert await storage.get_item("k") == {"token": "visible?"}
