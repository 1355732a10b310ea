"""Tests for the HTTP API (Flask test client)."""

import io

import numpy as np
import pytest

from blindmark import create_app
from blindmark.watermark import watermark_id
from blindmark.watermark.wav import encode_wav


@pytest.fixture()
def app():
    application = create_app("config.TestingConfig")
    yield application


@pytest.fixture()
def client(app):
    return app.test_client()


def _png_bytes(size: int = 64, value: int = 120) -> bytes:
    import cv2
    ok, buf = cv2.imencode(".png", np.full((size, size, 3), value, dtype=np.uint8))
    assert ok
    return buf.tobytes()


def _wav_bytes(n_samples: int = 44100) -> bytes:
    t = np.arange(n_samples) / 44100.0
    return encode_wav(0.3 * np.sin(2 * np.pi * 440 * t), 44100)


def _post(client, url, payload: bytes, filename: str, passphrase="alpha"):
    data = {"file": (io.BytesIO(payload), filename)}
    if passphrase is not None:
        data["passphrase"] = passphrase
    return client.post(url, data=data, content_type="multipart/form-data")


class TestHealth:
    def test_health(self, client):
        rv = client.get("/health")
        assert rv.status_code == 200
        assert rv.get_json() == {"status": "healthy"}

    def test_not_found_is_json(self, client):
        rv = client.get("/no/such/route")
        assert rv.status_code == 404
        assert rv.get_json()["error"] == "Not found"


class TestWatermarkImage:
    def test_watermark_then_verify(self, client):
        rv = _post(client, "/api/watermark", _png_bytes(), "flat.png")
        assert rv.status_code == 200
        assert rv.mimetype == "image/png"
        assert rv.headers["X-Watermark-Id"] == watermark_id("alpha")
        assert "flat_watermarked.png" in rv.headers["Content-Disposition"]

        rv = _post(client, "/api/verify", rv.data, "flat_watermarked.png")
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["media_type"] == "image"
        assert body["is_watermarked"] is True
        assert body["confidence"] == pytest.approx(1.0)

    def test_verify_wrong_passphrase(self, client):
        marked = _post(client, "/api/watermark", _png_bytes(), "flat.png").data
        rv = _post(client, "/api/verify", marked, "flat.png", passphrase="gamma")
        assert rv.status_code == 200
        assert rv.get_json()["is_watermarked"] is False

    def test_verify_clean_image(self, client):
        rv = _post(client, "/api/verify", _png_bytes(), "flat.png")
        assert rv.status_code == 200
        assert rv.get_json()["is_watermarked"] is False


class TestWatermarkAudio:
    def test_returns_wav(self, client):
        rv = _post(client, "/api/watermark", _wav_bytes(), "tone.wav")
        assert rv.status_code == 200
        assert rv.mimetype in ("audio/wav", "audio/x-wav")
        assert rv.data[:4] == b"RIFF"
        assert rv.data[8:12] == b"WAVE"

    def test_verify_returns_scores(self, client):
        marked = _post(client, "/api/watermark", _wav_bytes(), "tone.wav").data
        rv = _post(client, "/api/verify", marked, "tone.wav")
        assert rv.status_code == 200
        body = rv.get_json()
        assert body["media_type"] == "audio"
        assert set(body["algorithm_scores"]) == {"lsb", "am", "echo", "spread_spectrum"}


class TestErrors:
    def test_missing_file(self, client):
        rv = client.post("/api/watermark", data={"passphrase": "alpha"},
                         content_type="multipart/form-data")
        assert rv.status_code == 400
        assert "error" in rv.get_json()

    def test_missing_passphrase(self, client):
        rv = _post(client, "/api/watermark", _png_bytes(), "flat.png", passphrase=None)
        assert rv.status_code == 400
        assert "passphrase" in rv.get_json()["error"]

    def test_disallowed_extension(self, client):
        rv = _post(client, "/api/verify", b"hello", "notes.txt")
        assert rv.status_code == 400
        assert rv.get_json()["error"] == "File type not allowed"

    def test_corrupt_image_is_unprocessable(self, client):
        rv = _post(client, "/api/watermark", b"not really a png", "broken.png")
        assert rv.status_code == 422
        assert "error" in rv.get_json()

    def test_corrupt_wav_is_unprocessable(self, client):
        rv = _post(client, "/api/verify", b"RIFF....not wave", "broken.wav")
        assert rv.status_code == 422

    def test_too_large(self, app, client):
        app.config["MAX_CONTENT_LENGTH"] = 1024
        rv = _post(client, "/api/watermark", b"\x00" * 4096, "big.png")
        assert rv.status_code == 413
        assert rv.get_json()["max_bytes"] == 1024
