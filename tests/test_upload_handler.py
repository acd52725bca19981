"""
Tests for the multipart image upload endpoint
"""

import re
import pytest
from pathlib import Path
from urllib.parse import unquote, urlparse
from starlette.testclient import TestClient

import sys
sys.path.append(str(Path(__file__).parent.parent))

from app_config import AppConfig
from server import create_app
from upload_handler import generate_upload_filename

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def storage_dir(tmp_path):
    return tmp_path / "uploads" / "nested"


@pytest.fixture
def client(storage_dir):
    return TestClient(create_app(AppConfig(image_storage_directory=storage_dir)))


class TestUpload:

    def test_valid_upload(self, client, storage_dir):
        """Stored file exists, URI points at it, size matches"""
        resp = client.post("/upload", files={"image": ("cat.png", PNG_BYTES, "image/png")})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["originalName"] == "cat.png"
        assert data["size"] == len(PNG_BYTES)
        assert data["fileUri"].startswith("file://")

        stored = Path(unquote(urlparse(data["fileUri"]).path))
        assert stored.exists()
        assert stored.read_bytes() == PNG_BYTES
        assert stored.parent == storage_dir.resolve()
        assert stored.name == data["filename"]

    def test_no_file(self, client, storage_dir):
        """Missing file is a 400 and nothing is written"""
        resp = client.post("/upload", data={"note": "no file here"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "No image file provided"}
        assert not storage_dir.exists() or list(storage_dir.iterdir()) == []

    def test_wrong_field_name(self, client):
        resp = client.post("/upload", files={"picture": ("cat.png", PNG_BYTES, "image/png")})
        assert resp.status_code == 400

    def test_two_uploads_do_not_collide(self, client, storage_dir):
        first = client.post("/upload", files={"image": ("a.png", PNG_BYTES, "image/png")}).json()
        second = client.post("/upload", files={"image": ("a.png", PNG_BYTES, "image/png")}).json()
        assert first["filename"] != second["filename"]
        assert len(list(storage_dir.iterdir())) == 2


class TestFilename:

    def test_format(self):
        name = generate_upload_filename("image", "holiday photo.JPG")
        assert re.fullmatch(r"image-\d{13}-\d+\.JPG", name)

    def test_no_extension(self):
        assert re.fullmatch(r"image-\d+-\d+", generate_upload_filename("image", "blob"))


if __name__ == "__main__":
    pytest.main([__file__])
