import io

import cloudinary.exceptions
import cloudinary.uploader
import mongomock
import pytest
from werkzeug.datastructures import FileStorage

from conftest import base_config
from storefront import create_app
from storefront.errors import UpstreamError
from storefront.media import CloudinaryMediaStore, MediaService, public_id_from_url


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://res.cloudinary.com/demo/image/upload/v1712/jesko-products/abc123.jpg", "jesko-products/abc123"),
        ("https://res.cloudinary.com/demo/image/upload/abc123.png", "abc123"),
        ("https://cdn.example.com/images/banner.final.webp?w=300", "banner.final"),
        ("https://cdn.example.com/", ""),
        ("", ""),
    ],
)
def test_public_id_from_url(url, expected):
    assert public_id_from_url(url) == expected


def test_upload_image(client, admin_headers, media_store):
    response = client.post(
        "/api/upload/image",
        data={"image": (io.BytesIO(b"\x89PNG fake"), "board photo.png")},
        headers=admin_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    assert response.get_json() == {
        "url": "https://res.cloudinary.com/demo/image/upload/v1712/jesko-products/abc123.jpg",
        "public_id": "jesko-products/abc123",
    }
    assert media_store.uploaded == ["board photo.png"]


def test_upload_requires_a_file(client, admin_headers):
    response = client.post("/api/upload/image", data={}, headers=admin_headers, content_type="multipart/form-data")

    assert response.status_code == 400
    assert response.get_json()["message"] == "No file uploaded."


def test_upload_rejects_unsupported_formats(client, admin_headers, media_store):
    response = client.post(
        "/api/upload/image",
        data={"image": (io.BytesIO(b"GIF89a"), "spinner.gif")},
        headers=admin_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 400
    assert media_store.uploaded == []


def test_upload_requires_admin(client, make_token):
    headers = {"Authorization": f"Bearer {make_token(roles=())}"}

    response = client.post(
        "/api/upload/image",
        data={"image": (io.BytesIO(b"\x89PNG fake"), "board.png")},
        headers=headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 403


def test_delete_image_by_public_id(client, admin_headers, media_store):
    response = client.delete("/api/upload/image", json={"public_id": "jesko-products/abc123"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.get_json()["deleted"] is True
    assert media_store.destroyed == ["jesko-products/abc123"]


def test_delete_image_by_url(client, admin_headers, media_store):
    response = client.delete(
        "/api/upload/image",
        json={"url": "https://res.cloudinary.com/demo/image/upload/v9/jesko-products/old.jpg"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert media_store.destroyed == ["jesko-products/old"]


def test_delete_missing_image_counts_as_deleted(client, admin_headers, media_store):
    media_store.destroy_result = {"result": "not found"}

    response = client.delete("/api/upload/image", json={"public_id": "gone"}, headers=admin_headers)

    assert response.status_code == 200


def test_delete_image_needs_a_target(client, admin_headers):
    response = client.delete("/api/upload/image", json={}, headers=admin_headers)

    assert response.status_code == 400


def test_delete_image_reports_host_failures(client, admin_headers, media_store):
    media_store.destroy_result = {"result": "error"}

    response = client.delete("/api/upload/image", json={"public_id": "abc"}, headers=admin_headers)

    assert response.status_code == 502


def test_media_disabled_without_credentials(rsa_key, make_token):
    app = create_app(
        base_config(),
        database=mongomock.MongoClient()["no_media"],
        signing_key_resolver=lambda jwt_header: rsa_key.public_key(),
    )
    headers = {"Authorization": f"Bearer {make_token()}"}

    response = app.test_client().delete("/api/upload/image", json={"public_id": "abc"}, headers=headers)

    assert response.status_code == 503


@pytest.fixture
def cloudinary_store():
    return CloudinaryMediaStore("demo", "key", "secret", folder="jesko-products")


def board_upload():
    return FileStorage(stream=io.BytesIO(b"\x89PNG fake"), filename="board.png")


def test_cloudinary_upload_passes_credentials_and_folder(cloudinary_store, monkeypatch):
    calls = []

    def fake_upload(file, **options):
        calls.append(options)
        return {
            "secure_url": "https://res.cloudinary.com/demo/image/upload/v1/jesko-products/board.png",
            "public_id": "jesko-products/board",
        }

    monkeypatch.setattr(cloudinary.uploader, "upload", fake_upload)

    uploaded = cloudinary_store.upload(board_upload())

    assert uploaded["public_id"] == "jesko-products/board"
    assert calls[0]["folder"] == "jesko-products"
    assert calls[0]["cloud_name"] == "demo"
    assert calls[0]["api_secret"] == "secret"


def test_cloudinary_upload_failure_is_an_upstream_error(cloudinary_store, monkeypatch):
    def failing_upload(file, **options):
        raise cloudinary.exceptions.Error("Server returned unexpected status code - 500")

    monkeypatch.setattr(cloudinary.uploader, "upload", failing_upload)

    with pytest.raises(UpstreamError) as info:
        cloudinary_store.upload(board_upload())

    assert info.value.status_code == 502
    assert info.value.retryable is False


def test_cloudinary_destroy_failure_is_an_upstream_error(cloudinary_store, monkeypatch):
    def failing_destroy(public_id, **options):
        raise cloudinary.exceptions.Error("Invalid Signature")

    monkeypatch.setattr(cloudinary.uploader, "destroy", failing_destroy)

    with pytest.raises(UpstreamError) as info:
        MediaService(cloudinary_store).delete_image(public_id="jesko-products/board")

    assert info.value.status_code == 502
