"""
Tests for the bills router — text parsing and image scanning.

The scan endpoint runs against StubOcrEngine (see conftest), so these tests
exercise upload handling, error mapping and the parse → hand-off path without
a tesseract binary.
"""
import pytest
from httpx import ASGITransport, AsyncClient


# ── Fixture ──────────────────────────────────────────────────────────────────

@pytest.fixture
def make_app():
    def _make(engine):
        from fastapi import FastAPI
        from routers.bills import router

        test_app = FastAPI()
        test_app.include_router(router, prefix="/api/bills")
        test_app.state.ocr_engine = engine
        return test_app
    return _make


@pytest.fixture
def app(make_app, stub_engine):
    return make_app(stub_engine)


def client_for(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ── POST /api/bills/parse ────────────────────────────────────────────────────

class TestParseText:

    @pytest.mark.asyncio
    async def test_simple_bill(self, app):
        text = "Burger 12.99\nFries 4.50\nSoda 2.99\nSubtotal 20.48\nTax 1.64\nTotal 22.12"
        async with client_for(app) as client:
            resp = await client.post("/api/bills/parse", json={"text": text})

        assert resp.status_code == 200
        data = resp.json()
        assert [i["name"] for i in data["items"]] == ["Burger", "Fries", "Soda"]
        assert data["items"][0]["unit_price"] == 12.99
        assert data["items"][0]["quantity"] == 1
        assert data["items"][0]["confidence"] == 0.7
        assert data["subtotal"] == 20.48
        assert data["total"] == 22.12
        assert data["tax"] == {"kind": "percentage", "value": 8.01, "amount": 1.64}

    @pytest.mark.asyncio
    async def test_quantity(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/bills/parse", json={"text": "2x Pizza 30.00"})
        item = resp.json()["items"][0]
        assert item["quantity"] == 2
        assert item["unit_price"] == 15.00

    @pytest.mark.asyncio
    async def test_unreadable_text_is_not_an_error(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/bills/parse", json={"text": "hello\nworld"})
        assert resp.status_code == 200
        assert resp.json() == {"items": [], "tax": None, "subtotal": None, "total": None}

    @pytest.mark.asyncio
    async def test_missing_text_defaults_empty(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/bills/parse", json={})
        assert resp.status_code == 200
        assert resp.json()["items"] == []

    @pytest.mark.asyncio
    async def test_wrong_type_rejected(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/bills/parse", json={"text": ["a", "b"]})
        assert resp.status_code == 422


# ── POST /api/bills/scan ─────────────────────────────────────────────────────

class TestScan:

    @pytest.mark.asyncio
    async def test_scan_returns_items_with_ids(self, app, stub_engine, png_bytes):
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", png_bytes, "image/png")}
            )

        assert resp.status_code == 200
        data = resp.json()
        assert stub_engine.calls == 1
        assert data["ocr_confidence"] == 0.87
        assert "Burger" in data["ocr_text"]
        assert len(data["items"]) == 3
        assert all(item["id"] for item in data["items"])
        assert all(item["assigned_to"] == [] for item in data["items"])
        assert data["tax"] == {"kind": "percentage", "value": 8.01, "parsed": True}
        assert data["subtotal"] == 20.48
        assert data["total"] == 22.12
        assert data["total_verified"] is True

    @pytest.mark.asyncio
    async def test_scan_no_items_is_ok(self, make_app, stub_engine_factory, png_bytes):
        app = make_app(stub_engine_factory(text="blurry nothing", confidence=0.12))
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", png_bytes, "image/png")}
            )
        assert resp.status_code == 200
        data = resp.json()
        assert data["items"] == []
        assert data["tax"] is None
        assert data["total_verified"] is False
        assert "Could not find a total" in data["verification_message"]

    @pytest.mark.asyncio
    async def test_empty_upload(self, app):
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", b"", "image/png")}
            )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_upload_too_large(self, app, monkeypatch):
        monkeypatch.setattr("routers.bills.MAX_UPLOAD_MB", 0.0001)
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", b"x" * 1024, "image/png")}
            )
        assert resp.status_code == 413

    @pytest.mark.asyncio
    async def test_oversized_upload_read_is_bounded(self, app, stub_engine, monkeypatch):
        """The router never asks for more than one byte past the limit."""
        from starlette.datastructures import UploadFile

        sizes = []
        original_read = UploadFile.read

        async def recording_read(self, size=-1):
            sizes.append(size)
            return await original_read(self, size)

        monkeypatch.setattr(UploadFile, "read", recording_read)
        monkeypatch.setattr("routers.bills.MAX_UPLOAD_MB", 0.001)
        limit = int(0.001 * 1024 * 1024)

        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", b"x" * (limit * 50), "image/png")}
            )

        assert resp.status_code == 413
        assert sizes
        assert all(0 <= size <= limit + 1 for size in sizes)
        assert stub_engine.calls == 0

    @pytest.mark.asyncio
    async def test_upload_at_limit_is_accepted(self, app, stub_engine, monkeypatch):
        monkeypatch.setattr("routers.bills.MAX_UPLOAD_MB", 0.001)
        limit = int(0.001 * 1024 * 1024)
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", b"x" * limit, "image/png")}
            )
        assert resp.status_code == 200
        assert stub_engine.calls == 1

    @pytest.mark.asyncio
    async def test_engine_unavailable(self, make_app, stub_engine_factory, png_bytes):
        app = make_app(stub_engine_factory(available=False))
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", png_bytes, "image/png")}
            )
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_no_engine_configured(self, make_app, png_bytes):
        app = make_app(None)
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", png_bytes, "image/png")}
            )
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_ocr_failure_maps_to_422(self, make_app, stub_engine_factory, png_bytes):
        app = make_app(stub_engine_factory(error="Cannot open image: bad data"))
        async with client_for(app) as client:
            resp = await client.post(
                "/api/bills/scan", files={"file": ("bill.png", png_bytes, "image/png")}
            )
        assert resp.status_code == 422
        assert "Cannot open image" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_missing_file_field(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/bills/scan")
        assert resp.status_code == 422
