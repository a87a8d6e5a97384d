"""
tests/test_storage.py — Artifact Store Tests
=============================================
"""

from __future__ import annotations

import pytest

from conftest import run
from photoquest.errors import StorageFailureError
from photoquest.services.storage_service import (
    MAX_FILE_SIZE,
    submission_path,
    validate_photo,
)

PATH = "quest-submissions/u1/q1_1700000000000.jpg"


class TestValidatePhoto:
    def test_normalises_jpeg(self):
        assert validate_photo("IMG_1.JPEG", b"x", "image/jpeg") == ".jpg"

    @pytest.mark.parametrize("filename,content,content_type", [
        ("a.jpg", b"", None),
        ("a.gif", b"x", None),
        ("noext", b"x", None),
        ("a.png", b"x", "application/pdf"),
        ("a.png", b"x" * (MAX_FILE_SIZE + 1), None),
    ])
    def test_rejects(self, filename, content, content_type):
        with pytest.raises(ValueError):
            validate_photo(filename, content, content_type)


def test_submission_path():
    assert submission_path("u1", "q1", 1700000000000, ".jpg") == PATH


class TestLocalObjectStore:
    def test_upload_and_delete(self, store):
        artifact = run(store.upload(PATH, b"photo"))

        assert artifact.url == f"/api/artifacts/{PATH}"
        assert artifact.size_bytes == 5
        assert (store.root / PATH).read_bytes() == b"photo"
        assert run(store.exists(PATH))

        assert run(store.delete(PATH)) is True
        assert not run(store.exists(PATH))

    def test_write_once(self, store):
        run(store.upload(PATH, b"first"))
        with pytest.raises(StorageFailureError):
            run(store.upload(PATH, b"second"))
        assert (store.root / PATH).read_bytes() == b"first"

    def test_delete_missing_is_not_an_error(self, store):
        assert run(store.delete(PATH)) is False

    @pytest.mark.parametrize("path", ["../escape.jpg", "/etc/passwd", "a/../../b.jpg", ""])
    def test_rejects_path_traversal(self, store, path):
        with pytest.raises(ValueError):
            run(store.upload(path, b"x"))
