import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from conftest import image_bytes
from mediabatch.config import OUTPUT_DIR
from mediabatch.main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def image_files(*specs):
    return [("images", (name, data, "image/png")) for name, data in specs]


class TestProcessImages:
    """Tests for POST /api/process."""

    def test_batch_with_options(self, client: TestClient) -> None:
        files = image_files(("a.png", image_bytes((300, 200))), ("b.png", image_bytes((64, 64))))
        options = {"a.png": {"width": 150, "height": 100, "quality": 70}}

        response = client.post("/api/process", files=files, data={"options": json.dumps(options)})

        assert response.status_code == 200
        results = response.json()["results"]
        assert [r["originalName"] for r in results] == ["a.png", "b.png"]
        assert all(r["status"] == "done" for r in results)

        first, second = results
        assert first["avif"].startswith("/processed/") and first["avif"].endswith(".avif")
        assert first["webp"].endswith(".webp")
        assert first["resizedOriginal"].endswith("_resized.png")
        assert first["resizedOriginalSize"] > 0
        assert first["originalSize"] > 0
        assert first["placeholder"].startswith("data:image/webp;base64,")
        assert "resizedOriginal" not in second

        download = client.get(first["resizedOriginal"])
        assert download.status_code == 200
        with Image.open(io.BytesIO(download.content)) as img:
            assert img.size == (150, 100)

    def test_legacy_resize_field(self, client: TestClient) -> None:
        files = image_files(("legacy.png", image_bytes((100, 100))))
        response = client.post(
            "/api/process",
            files=files,
            data={"resize_legacy.png": json.dumps({"width": 20, "height": 10})},
        )
        (result,) = response.json()["results"]
        assert result["status"] == "done"
        assert "resizedOriginal" in result

    def test_duplicate_names_get_distinct_outputs(self, client: TestClient) -> None:
        files = image_files(("same.png", image_bytes((30, 30))), ("same.png", image_bytes((60, 20))))
        results = client.post("/api/process", files=files).json()["results"]
        assert results[0]["webp"] != results[1]["webp"]
        sizes = []
        for r in results:
            with Image.open(io.BytesIO(client.get(r["webp"]).content)) as img:
                sizes.append(img.size)
        assert sizes == [(30, 30), (60, 20)]

    def test_corrupt_file_is_reported_per_item(self, client: TestClient) -> None:
        files = image_files(("good.png", image_bytes()), ("bad.png", b"garbage"), ("good2.png", image_bytes()))
        results = client.post("/api/process", files=files).json()["results"]
        assert [r["status"] for r in results] == ["done", "failed", "done"]
        assert results[1]["error"]
        assert "avif" not in results[1]

    def test_unsupported_extension_is_reported_per_item(self, client: TestClient) -> None:
        files = image_files(("pic.png", image_bytes()), ("readme.txt", b"hello"))
        results = client.post("/api/process", files=files).json()["results"]
        assert [r["status"] for r in results] == ["done", "failed"]
        assert results[1]["error"] == "Unsupported format: .txt"
        assert ".txt" not in client.get("/api/formats").json()["image"]

    def test_no_files_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/process", data={"options": "{}"})
        assert response.status_code == 400


class TestProcessAudio:
    """Tests for POST /api/process-audio."""

    def test_corrupt_audio_is_reported_per_item(self, client: TestClient) -> None:
        files = [("audio", ("broken.wav", b"not audio at all", "audio/wav"))]
        response = client.post("/api/process-audio", files=files)
        assert response.status_code == 200
        (result,) = response.json()["results"]
        assert result["status"] == "failed"
        assert result["error"]
        assert "output" not in result

    def test_no_files_is_rejected(self, client: TestClient) -> None:
        assert client.post("/api/process-audio", data={}).status_code == 400


class TestDownloads:
    """Tests for /api/zip and /processed/{name}."""

    def test_zip_contains_valid_subset(self, client: TestClient) -> None:
        files = image_files(("z1.png", image_bytes()), ("z2.png", image_bytes()))
        results = client.post("/api/process", files=files).json()["results"]
        refs = [results[0]["webp"], "/processed/bogus.webp", results[1]["avif"]]

        response = client.post("/api/zip", json={"files": refs})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert "converted.zip" in response.headers["content-disposition"]
        names = zipfile.ZipFile(io.BytesIO(response.content)).namelist()
        assert sorted(names) == sorted([results[0]["webp"].rsplit("/", 1)[-1], results[1]["avif"].rsplit("/", 1)[-1]])

    def test_empty_zip_request_is_rejected(self, client: TestClient) -> None:
        assert client.post("/api/zip", json={"files": []}).status_code == 400

    def test_zip_of_unknown_files_is_not_found(self, client: TestClient) -> None:
        assert client.post("/api/zip", json={"files": ["/processed/nothing.webp"]}).status_code == 404

    def test_unregistered_file_is_not_served(self, client: TestClient) -> None:
        (OUTPUT_DIR / "planted.txt").write_text("secret")
        assert client.get("/processed/planted.txt").status_code == 404

    def test_health_and_limits(self, client: TestClient) -> None:
        assert client.get("/api/health").json() == {"status": "ok"}
        assert client.get("/api/limits").json()["max_files_per_batch"] == 50
        formats = client.get("/api/formats").json()
        assert ".png" in formats["image"]
        assert ".wav" in formats["audio"]
