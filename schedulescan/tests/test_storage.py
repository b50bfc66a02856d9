"""Tests for the filesystem object store and upload intake helpers."""

from __future__ import annotations

import asyncio
import io
import re

import pytest
from fastapi import UploadFile
from sqlalchemy.exc import OperationalError
from sqlmodel import Session
from starlette.datastructures import Headers

from schedulescan.database import get_engine
from schedulescan.services import uploads
from schedulescan.services.storage import ObjectStorage, secure_extension
from schedulescan.services.uploads import display_filename
from schedulescan.utils.errors import StorageError, StorageObjectNotFound


@pytest.fixture()
def storage(tmp_path) -> ObjectStorage:
    return ObjectStorage(tmp_path, "pdfs", public_base_url="http://files.local/")


def test_put_and_read_round_trip(storage: ObjectStorage) -> None:
    path = storage.put(b"%PDF-1.4 body", filename="Statement of Facts.PDF")

    assert re.fullmatch(r"\d+-[0-9a-f]{12}\.pdf", path)
    assert storage.read(path) == b"%PDF-1.4 body"
    assert storage.exists(path)
    assert (storage.bucket_dir / path).is_file()


def test_missing_object_raises_not_found(storage: ObjectStorage) -> None:
    with pytest.raises(StorageObjectNotFound):
        storage.read("123-abc.pdf")


@pytest.mark.parametrize("path", ["../secret.pdf", "nested/a.pdf", "", ".hidden"])
def test_paths_cannot_escape_bucket(storage: ObjectStorage, path: str) -> None:
    with pytest.raises(StorageError):
        storage.resolve(path)


def test_delete_reports_whether_object_existed(storage: ObjectStorage) -> None:
    path = storage.put(b"data", filename="a.pdf")

    assert storage.delete(path) is True
    assert storage.delete(path) is False


def test_public_url_points_at_storage_route(storage: ObjectStorage) -> None:
    path = storage.put(b"data", filename="a.pdf")

    assert storage.public_url(path) == f"http://files.local/api/storage/{path}"


def test_from_settings_derives_local_base_url(make_settings) -> None:
    storage = ObjectStorage.from_settings(make_settings())

    assert storage.public_base_url == "http://127.0.0.1:8000"
    assert storage.bucket_dir.is_dir()


def test_helpers_clean_names() -> None:
    assert secure_extension("report.P D F") == "pdf"
    assert secure_extension("noext") == "pdf"
    assert display_filename("C:\\Users\\me\\sof.pdf") == "sof.pdf"
    assert display_filename("").endswith(".pdf")


def test_failed_document_insert_removes_stored_upload(
    storage: ObjectStorage, make_settings, database, monkeypatch
) -> None:
    def refuse(**_kwargs):
        raise OperationalError("INSERT INTO documents", {}, Exception("disk I/O error"))

    monkeypatch.setattr(uploads.store, "create_document", refuse)
    upload = UploadFile(
        file=io.BytesIO(b"%PDF-1.4 body"),
        filename="sof.pdf",
        headers=Headers({"content-type": "application/pdf"}),
    )

    with Session(get_engine()) as session:
        with pytest.raises(OperationalError):
            asyncio.run(
                uploads.handle_upload(
                    session=session,
                    upload=upload,
                    settings=make_settings(),
                    storage=storage,
                )
            )

    assert list(storage.bucket_dir.iterdir()) == []
