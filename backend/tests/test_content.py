from __future__ import annotations

import io
from pathlib import Path

import pytest

from filevault.common.content import detect_mime_type, is_inline_text, normalize_mime_type


PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


def _upload(client, headers, name: str, data: bytes, content_type: str | None = None) -> int:
    file_field = (io.BytesIO(data), name, content_type) if content_type else (io.BytesIO(data), name)
    response = client.post(
        "/files/upload",
        data={"file": file_field},
        headers=headers,
        content_type="multipart/form-data",
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


@pytest.mark.parametrize(
    ("mime_type", "expected"),
    [
        ("text/plain", True),
        ("text/markdown; charset=utf-8", True),
        ("application/json", True),
        ("application/vnd.api+json", True),
        ("image/svg+xml", True),
        ("application/javascript", True),
        ("image/png", False),
        ("application/pdf", False),
        (None, False),
    ],
)
def test_inline_text_classification(mime_type, expected):
    assert is_inline_text(mime_type) is expected


def test_mime_type_detection_falls_back_to_filename():
    assert normalize_mime_type("Text/HTML; charset=UTF-8") == "text/html"
    assert detect_mime_type("report.pdf", "application/octet-stream") == "application/pdf"
    assert detect_mime_type("data.json", None) == "application/json"
    assert detect_mime_type("blob", "") == "application/octet-stream"
    assert detect_mime_type("photo.jpg", "image/png") == "image/png"


def test_text_content_is_returned_inline(client, login):
    headers = login("alice")
    file_id = _upload(client, headers, "config.json", b'{"ok": true}', "application/json")

    response = client.get(f"/files/{file_id}/content", headers=headers)
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["content"] == '{"ok": true}'
    assert payload["mime_type"] == "application/json"
    assert payload["filename"] == "config.json"
    assert payload["version_number"] == 1


def test_undecodable_text_is_replaced(client, login):
    headers = login("alice")
    file_id = _upload(client, headers, "latin.txt", b"caf\xe9", "text/plain")

    payload = client.get(f"/files/{file_id}/content", headers=headers).get_json()
    assert payload["content"] == "caf\ufffd"


def test_binary_content_is_streamed(client, login):
    headers = login("alice")
    file_id = _upload(client, headers, "pixel.png", PNG_BYTES, "image/png")

    response = client.get(f"/files/{file_id}/content", headers=headers)
    assert response.status_code == 200
    assert response.mimetype == "image/png"
    assert response.data == PNG_BYTES
    assert response.headers["Content-Disposition"].startswith("inline")
    response.close()


def test_download_is_an_attachment_for_any_type(client, login):
    headers = login("alice")
    file_id = _upload(client, headers, "notes.txt", b"plain words", "text/plain")

    response = client.get(f"/files/{file_id}/download", headers=headers)
    assert response.status_code == 200
    assert response.data == b"plain words"
    assert response.headers["Content-Disposition"].startswith("attachment")
    assert "notes.txt" in response.headers["Content-Disposition"]
    response.close()


def test_folder_has_no_content(client, login):
    headers = login("alice")
    folder = client.post("/folders/", json={"name": "F"}, headers=headers).get_json()

    response = client.get(f"/files/{folder['id']}/content", headers=headers)
    assert response.status_code == 400


def test_missing_blob_is_reported(client, app, login):
    headers = login("alice")
    file_id = _upload(client, headers, "pixel.png", PNG_BYTES, "image/png")

    for blob in Path(app.config["STORAGE_ROOT"]).glob("*/*"):
        if blob.is_file():
            blob.unlink()

    response = client.get(f"/files/{file_id}/download", headers=headers)
    assert response.status_code == 404
    assert response.get_json()["error"]["code"] == "FILE_MISSING"
