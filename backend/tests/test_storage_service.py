"""
Tests for blob storage (local backend)
"""

import pytest

from acervo.core.config import settings
from acervo.core.exceptions import StorageError
from acervo.services.storage_service import StorageService


class TestLocalStorage:
    def test_upload_then_download(self, storage):
        storage.upload("user-1/1700000000_acta.txt", b"contenido")

        assert storage.exists("user-1/1700000000_acta.txt")
        assert storage.download("user-1/1700000000_acta.txt") == b"contenido"

    def test_missing_blob_raises(self, storage):
        with pytest.raises(StorageError):
            storage.download("user-1/nada.txt")

    def test_delete_is_idempotent(self, storage):
        storage.upload("user-1/a.txt", b"x")

        storage.delete("user-1/a.txt")
        storage.delete("user-1/a.txt")

        assert not storage.exists("user-1/a.txt")

    def test_keys_cannot_escape_root(self, storage):
        with pytest.raises(StorageError):
            storage.upload("../fuera.txt", b"x")
        with pytest.raises(StorageError):
            storage.download("user-1/../../fuera.txt")

    def test_empty_key_is_rejected(self, storage):
        with pytest.raises(StorageError):
            storage.upload("", b"x")
        assert storage.exists("") is False


class TestObjectStorageConfig:
    def test_missing_endpoint_is_storage_error(self, monkeypatch):
        monkeypatch.setattr(settings, "S3_ENDPOINT", None)
        service = StorageService(backend="s3")

        assert service.is_object_storage()
        with pytest.raises(StorageError):
            service.upload("user-1/a.txt", b"x")
