"""
Tests for image metadata sidecars
"""

import json
import logging
import pytest
from pathlib import Path

import sys
sys.path.append(str(Path(__file__).parent.parent))

from metadata_utils import MetadataResponse, RequestParams, metadata_path_for, save_metadata


@pytest.fixture
def request_params():
    return RequestParams(
        prompt="a red fox in snow",
        aspect_ratio="16:9",
        model="stable-image-core",
        output_image_file_name="fox.png",
    )


class TestMetadataPath:

    def test_png(self):
        assert metadata_path_for("/data/foo.png") == Path("/data/foo.txt")

    def test_extension_case_insensitive(self):
        assert metadata_path_for("/data/foo.JPEG") == Path("/data/foo.txt")
        assert metadata_path_for("/data/foo.Jpg") == Path("/data/foo.txt")

    def test_other_extension_never_clobbers(self):
        assert metadata_path_for("/data/foo.webp") == Path("/data/foo.webp.txt")


class TestSaveMetadata:

    @pytest.mark.asyncio
    async def test_success_sidecar(self, tmp_path, request_params):
        image = tmp_path / "fox.png"
        await save_metadata(image, request_params,
                            MetadataResponse(response_type="success", time_generated="2026-01-01T00:00:00Z"))

        data = json.loads((tmp_path / "fox.txt").read_text())
        assert set(data) == {"timestamp", "request", "response"}
        assert data["request"] == {
            "prompt": "a red fox in snow",
            "aspectRatio": "16:9",
            "model": "stable-image-core",
            "outputImageFileName": "fox.png",
        }
        assert data["response"] == {"responseType": "success", "timeGenerated": "2026-01-01T00:00:00Z"}

    @pytest.mark.asyncio
    async def test_uppercase_jpeg(self, tmp_path, request_params):
        await save_metadata(tmp_path / "foo.JPEG", request_params, error="boom")
        assert (tmp_path / "foo.txt").exists()

    @pytest.mark.asyncio
    async def test_exception_message_extracted(self, tmp_path, request_params):
        await save_metadata(tmp_path / "fox.png", request_params, error=RuntimeError("quota exceeded"))
        data = json.loads((tmp_path / "fox.txt").read_text())
        assert data["response"] == {"responseType": "error", "error": "quota exceeded"}

    @pytest.mark.asyncio
    async def test_string_error_used_directly(self, tmp_path, request_params):
        await save_metadata(tmp_path / "fox.png", request_params, error="upstream said no")
        data = json.loads((tmp_path / "fox.txt").read_text())
        assert data["response"]["error"] == "upstream said no"

    @pytest.mark.asyncio
    async def test_plain_dict_request(self, tmp_path):
        params = {"prompt": "x", "model": "m", "outputImageFileName": "x.png"}
        await save_metadata(tmp_path / "x.png", params, {"responseType": "success"})
        data = json.loads((tmp_path / "x.txt").read_text())
        assert data["request"] == params

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, tmp_path, request_params, caplog):
        missing_dir = tmp_path / "does" / "not" / "exist" / "fox.png"
        with caplog.at_level(logging.ERROR):
            await save_metadata(missing_dir, request_params, error="x")
        assert "Failed to save metadata" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__])
