import base64

import pytest
from fastapi.testclient import TestClient

from inkserver.app import create_app
from inkserver.config import get_settings
from inkserver.recognition.service import RecognitionService


def _client(*providers):
    service = RecognitionService(list(providers), timeout_s=2)
    app = create_app(service=service, settings=get_settings())
    return TestClient(app), service


def _b64(blob):
    return base64.b64encode(blob).decode()


@pytest.mark.parametrize("prefix", ["/recognition", "/api/recognition"])
def test_math_json_happy_path(fake_provider, png_bytes, prefix):
    client, _ = _client(fake_provider("a"))
    with client:
        r = client.post(f"{prefix}/math", json={"image": "data:image/png;base64," + _b64(png_bytes)})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["success"] is True
    assert data["latex"] == "a-latex"
    assert data["confidence"] == 0.9
    assert "error" not in data


def test_text_multipart_file(fake_provider, png_bytes):
    a = fake_provider("a")
    client, _ = _client(a)
    with client:
        r = client.post("/recognition/text", files={"image": ("strokes.png", png_bytes, "image/png")})
    assert r.status_code == 200, r.text
    assert r.json()["text"] == "a-text"
    assert a.payloads == [png_bytes]


def test_multipart_string_field_and_provider_id(fake_provider, png_bytes):
    a = fake_provider("a")
    b = fake_provider("b")
    client, _ = _client(a, b)
    with client:
        r = client.post("/recognition/math", data={"image": _b64(png_bytes), "providerId": "b"})
    assert r.status_code == 200, r.text
    assert r.json()["latex"] == "b-latex"
    assert a.total_calls == 0


def test_business_failure_is_400(fake_provider, png_bytes):
    client, _ = _client(fake_provider("a", error="x"), fake_provider("b", error="y"))
    with client:
        r = client.post("/recognition/math", json={"image": _b64(png_bytes)})
    assert r.status_code == 400
    assert r.json() == {"success": False, "confidence": 0.0, "error": "y"}


def test_no_providers_is_400(png_bytes):
    client, _ = _client()
    with client:
        r = client.post("/recognition/text", json={"image": _b64(png_bytes)})
    assert r.status_code == 400
    assert r.json()["error"] == "no available recognition providers"


def test_missing_image_is_400(fake_provider):
    client, _ = _client(fake_provider("a"))
    with client:
        r = client.post("/recognition/math", json={"providerId": "a"})
    assert r.status_code == 400
    assert r.json()["error"] == "Image data is required"


def test_invalid_base64_is_400(fake_provider):
    a = fake_provider("a")
    client, _ = _client(a)
    with client:
        r = client.post("/recognition/math", json={"image": "data:image/png;base64,@@@"})
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert a.probes == 0


def test_non_json_body_is_400(fake_provider):
    client, _ = _client(fake_provider("a"))
    with client:
        r = client.post("/recognition/math", content=b"garbage", headers={"content-type": "text/plain"})
    assert r.status_code == 400


def test_unknown_provider_is_400(fake_provider, png_bytes):
    client, _ = _client(fake_provider("a"))
    with client:
        r = client.post("/recognition/math", json={"image": _b64(png_bytes), "providerId": "ghost"})
    assert r.status_code == 400
    assert "ghost" in r.json()["error"]


def test_explicit_unavailable_is_400_without_fallback(fake_provider, png_bytes):
    a = fake_provider("a", available=False, name="Alpha")
    b = fake_provider("b")
    client, _ = _client(a, b)
    with client:
        r = client.post("/recognition/math", json={"image": _b64(png_bytes), "providerId": "a"})
    assert r.status_code == 400
    assert r.json()["error"] == "Provider Alpha is not available"
    assert b.total_calls == 0


def test_upload_too_large_is_413(fake_provider, monkeypatch):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "8")
    service = RecognitionService([fake_provider("a")])
    client = TestClient(create_app(service=service, settings=get_settings()))
    with client:
        r = client.post("/recognition/math", files={"image": ("big.bin", b"0123456789", "application/octet-stream")})
    assert r.status_code == 413


def test_internal_fault_is_500(fake_provider, monkeypatch, png_bytes):
    client, service = _client(fake_provider("a"))

    async def boom(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(service, "recognize", boom)
    with client:
        r = client.post("/recognition/math", json={"image": _b64(png_bytes)})
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "kaboom"}


def test_explicit_local_engine_without_degraded_path_is_400(png_bytes):
    from inkserver.recognition.providers.trocr_local import TrOCRLocal

    def broken():
        raise RuntimeError("no weights")

    local = TrOCRLocal(engine_factory=broken, stub_fallback=False)
    client, _ = _client(local)
    with client:
        r = client.post("/recognition/math", json={"image": _b64(png_bytes), "providerId": "trocr_local"})
    # engine never became ready, so the explicit call is refused
    assert r.status_code == 400
    assert "not available" in r.json()["error"]


@pytest.mark.parametrize("provider_id", [None, "trocr_local"])
def test_local_engine_not_ready_serves_placeholder(png_bytes, provider_id):
    from inkserver.recognition.providers.trocr_local import STUB_LATEX, TrOCRLocal

    def broken():
        raise RuntimeError("no weights")

    client, _ = _client(TrOCRLocal(engine_factory=broken))
    body = {"image": _b64(png_bytes)}
    if provider_id:
        body["providerId"] = provider_id
    with client:
        r = client.post("/recognition/math", json=body)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["fallbackProvider"] == "stub"
    assert data["latex"] == STUB_LATEX
    assert "no weights" in data["error"]


def test_providers_listing(fake_provider):
    client, _ = _client(fake_provider("a"), fake_provider("b", available=RuntimeError("probe")))
    with client:
        r = client.get("/recognition/providers")
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert [p["id"] for p in data["providers"]] == ["a", "b"]
    first = data["providers"][0]
    assert first["isAvailable"] is True
    assert first["requiresCredentials"] is False
    assert first["capabilities"]["supportsMathRecognition"] is True
    assert data["providers"][1]["isAvailable"] is False


@pytest.mark.parametrize("stub, local_available", [("1", True), ("0", False)])
def test_default_wiring_lists_both_providers(monkeypatch, stub, local_available):
    from inkserver.recognition.providers import trocr_local

    def offline(*args, **kwargs):
        raise RuntimeError("offline")

    monkeypatch.setattr(trocr_local, "TrOCREngine", offline)
    monkeypatch.setenv("LOCAL_STUB_FALLBACK", stub)
    client = TestClient(create_app())
    with client:
        r = client.get("/api/recognition/providers")
    assert r.status_code == 200
    providers = {p["id"]: p for p in r.json()["providers"]}
    assert list(providers) == ["trocr_local", "mathpix"]
    assert providers["mathpix"]["requiresCredentials"] is True
    assert providers["mathpix"]["isAvailable"] is False
    assert providers["trocr_local"]["isAvailable"] is local_available


def test_health_and_config():
    client = TestClient(create_app(service=RecognitionService()))
    with client:
        assert client.get("/health").json()["ok"] is True
        assert client.get("/api/health").status_code == 200
        cfg = client.get("/api/config").json()
    assert cfg["providers"] == ["trocr_local", "mathpix"]
    assert "mathpix_api_key_present" not in cfg
