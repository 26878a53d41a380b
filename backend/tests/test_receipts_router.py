"""
Tests for the receipts and models routers — validate, parse (with the
vision call patched out) and the model list.

The vision service itself is covered in test_vision_service.py.
"""
from unittest.mock import patch, AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from services.vision_service import (
    UnknownModelError,
    VisionExtractionError,
    VisionNotConfiguredError,
)

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgo="


# ── Fixture ──────────────────────────────────────────────────────────────────

@pytest.fixture
def app():
    from fastapi import FastAPI
    from routers import receipts, vision

    test_app = FastAPI()
    test_app.include_router(receipts.router, prefix="/api/receipts")
    test_app.include_router(vision.router, prefix="/api/models")
    return test_app


def client_for(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ── POST /api/receipts/validate ──────────────────────────────────────────────

class TestValidateEndpoint:

    @pytest.mark.asyncio
    async def test_clean_receipt(self, app, receipt):
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/validate", json=receipt)

        assert resp.status_code == 200
        body = resp.json()
        assert body["validation"] == {"valid": True, "issues": [], "confidence_score": 1.0}
        assert body["summary"]["discrepancy"] == 0
        assert body["summary"]["service_charge_included"] is False
        assert body["header"]["store_name"] == "Warung Sederhana"

    @pytest.mark.asyncio
    async def test_discrepancy_computed_before_validation(self, app, receipt):
        receipt["summary"]["total"] = 70000
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/validate", json=receipt)

        body = resp.json()
        assert body["summary"]["discrepancy"] == 3400
        types = [i["type"] for i in body["validation"]["issues"]]
        assert "discrepancy_explanation" in types
        assert body["validation"]["confidence_score"] < 1

    @pytest.mark.asyncio
    async def test_tiny_total_is_fatal(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/validate", json={"summary": {"total": 500}})

        assert resp.status_code == 200
        validation = resp.json()["validation"]
        assert validation["valid"] is True
        assert validation["confidence_score"] == 0.4
        assert validation["issues"] == [{
            "type": "total_too_small",
            "message": "Total too less than 1000, might be because of thousand scaling",
            "severity": "fatal",
        }]

    @pytest.mark.asyncio
    async def test_unknown_fields_preserved(self, app, receipt):
        receipt["header"]["cashier"] = "Dewi"
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/validate", json=receipt)

        assert resp.json()["header"]["cashier"] == "Dewi"

    @pytest.mark.asyncio
    async def test_none_fields_omitted(self, app):
        async with client_for(app) as client:
            resp = await client.post(
                "/api/receipts/validate",
                json={"header": {"store_name": "Toko", "store_address": None}},
            )

        body = resp.json()
        assert "store_address" not in body["header"]
        assert "items" not in body

    @pytest.mark.asyncio
    async def test_invalid_category_rejected(self, app, receipt):
        receipt["category"] = "Gambling"
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/validate", json=receipt)

        assert resp.status_code == 422


# ── POST /api/receipts/parse ─────────────────────────────────────────────────

class TestParseEndpoint:

    @pytest.mark.asyncio
    async def test_success(self, app, receipt):
        with patch("routers.receipts.parse_receipt_image",
                   new_callable=AsyncMock, return_value=receipt) as mock_parse:
            async with client_for(app) as client:
                resp = await client.post(
                    "/api/receipts/parse",
                    json={"image": PNG_DATA_URL, "model": "claude-haiku-4-5"},
                )

        assert resp.status_code == 200
        mock_parse.assert_awaited_once_with(PNG_DATA_URL, "claude-haiku-4-5")
        body = resp.json()
        assert body["validation"]["valid"] is True
        assert body["summary"]["discrepancy"] == 0

    @pytest.mark.asyncio
    async def test_invalid_image_is_400(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/parse", json={"image": "not-a-data-url"})

        assert resp.status_code == 400
        assert "Invalid image data" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_model_is_400(self, app):
        with patch("routers.receipts.parse_receipt_image", new_callable=AsyncMock,
                   side_effect=UnknownModelError("Unknown model 'gpt-vision'")):
            async with client_for(app) as client:
                resp = await client.post(
                    "/api/receipts/parse", json={"image": PNG_DATA_URL, "model": "gpt-vision"},
                )

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_key_is_503(self, app):
        with patch("routers.receipts.parse_receipt_image", new_callable=AsyncMock,
                   side_effect=VisionNotConfiguredError("ANTHROPIC_API_KEY not set")):
            async with client_for(app) as client:
                resp = await client.post("/api/receipts/parse", json={"image": PNG_DATA_URL})

        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_vision_failure_is_502(self, app):
        with patch("routers.receipts.parse_receipt_image", new_callable=AsyncMock,
                   side_effect=VisionExtractionError("Model returned invalid JSON")):
            async with client_for(app) as client:
                resp = await client.post("/api/receipts/parse", json={"image": PNG_DATA_URL})

        assert resp.status_code == 502
        assert "Model returned invalid JSON" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_422(self, app):
        with patch("routers.receipts.parse_receipt_image", new_callable=AsyncMock,
                   return_value={"items": "two coffees", "summary": {"total": "lots"}}):
            async with client_for(app) as client:
                resp = await client.post("/api/receipts/parse", json={"image": PNG_DATA_URL})

        assert resp.status_code == 422
        assert "receipt schema" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_missing_image_field(self, app):
        async with client_for(app) as client:
            resp = await client.post("/api/receipts/parse", json={})

        assert resp.status_code == 422


# ── GET /api/models ──────────────────────────────────────────────────────────

class TestModelsEndpoint:

    @pytest.mark.asyncio
    async def test_lists_models(self, app):
        async with client_for(app) as client:
            resp = await client.get("/api/models")

        assert resp.status_code == 200
        models = resp.json()
        assert {"id", "name", "provider"} <= set(models[0])
        assert "claude-sonnet-4-5" in [m["id"] for m in models]
