"""
HTTP surface: credits, analysis jobs and admin routes.

Runs the FastAPI app in-process with services built on the in-memory store
(lifespan is not entered, so no MongoDB or scheduler is needed).
"""
import asyncio
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from auth import create_access_token
from conftest import USER_ID, stub_handlers
from fake_mongo import FakeDatabase
from reportcredits.bootstrap import build_services
from reportcredits.errors import HandlerFailure
from reportcredits.handlers.vehicle import PaintAnalysisHandler
from reportcredits.models.jobs import AnalysisJobType


def _auth(user_id=USER_ID, role="USER"):
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


ADMIN = _auth("admin-001", "ADMIN")
JPEG = b"\xff\xd8\xff"


@pytest.fixture
def services():
    built = build_services(FakeDatabase(), handlers=stub_handlers())
    asyncio.run(built.catalog.seed_defaults())
    return built


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr("reportcredits.routes.jobs.ANALYSIS_UPLOAD_PATH", tmp_path)
    return tmp_path


@pytest.fixture
def api(client, services, upload_dir):
    client.app.state.services = services
    yield client
    del client.app.state.services


def _fund(services, amount):
    asyncio.run(services.ledger.credit(USER_ID, amount, "Top-up"))


class TestAuth:
    def test_requires_bearer_token(self, api):
        assert api.get("/api/credits/balance").status_code == 401
        assert api.get("/api/credits/balance", headers={"Authorization": "Bearer garbage"}).status_code == 401

    def test_admin_routes_require_admin_role(self, api):
        response = api.post(
            f"/api/admin/credits/{USER_ID}/add",
            json={"amount": "10", "reason": "goodwill"},
            headers=_auth(),
        )
        assert response.status_code == 403


class TestCredits:
    def test_balance_and_account(self, api, services):
        _fund(services, "100")

        body = api.get("/api/credits/balance", headers=_auth()).json()
        assert Decimal(body["balance"]) == Decimal("100.00")
        assert Decimal(body["available"]) == Decimal("100.00")
        assert Decimal(body["reserved"]) == Decimal("0.00")

        account = api.get("/api/credits/account", headers=_auth()).json()
        assert account["user_id"] == USER_ID
        assert Decimal(account["total_purchased"]) == Decimal("100.00")

    def test_history(self, api, services):
        _fund(services, "100")

        response = api.get("/api/credits/history?kind=PURCHASE", headers=_auth())
        assert response.status_code == 200
        assert len(response.json()["transactions"]) == 1

        assert api.get("/api/credits/history?kind=BOGUS", headers=_auth()).status_code == 400
        assert api.get("/api/credits/history?status=BOGUS", headers=_auth()).status_code == 400

    def test_pricing_is_public_and_lists_active_only(self, api):
        prices = api.get("/api/credits/pricing").json()
        job_types = {p["job_type"] for p in prices}
        assert "VALUE_ESTIMATION" not in job_types
        assert "COMPREHENSIVE_EXPERTISE" in job_types
        assert len(prices) == 4


class TestAnalysisJobs:
    def test_create_job_success(self, api, services, upload_dir):
        _fund(services, "100")

        response = api.post(
            "/api/analysis-jobs",
            data={"job_type": "PAINT_ANALYSIS", "plate": "06XYZ42", "year": "2020"},
            files={"image": ("car.jpg", JPEG, "image/jpeg")},
            headers=_auth(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["job"]["status"] == "COMPLETED"

        job = api.get(f"/api/analysis-jobs/{body['job_id']}", headers=_auth())
        assert job.status_code == 200
        assert job.json()["inputs"]["vehicle_info"]["plate"] == "06XYZ42"
        assert job.json()["inputs"]["vehicle_info"]["year"] == 2020

        listed = api.get("/api/analysis-jobs", headers=_auth()).json()
        assert [j["job_id"] for j in listed["jobs"]] == [body["job_id"]]

    def test_uploaded_media_is_stored_under_upload_dir(self, api, services, upload_dir):
        _fund(services, "100")

        api.post(
            "/api/analysis-jobs",
            data={"job_type": "ENGINE_SOUND_ANALYSIS"},
            files={"audio": ("../../engine.mp3", b"ID3audio", "audio/mpeg")},
            headers=_auth(),
        )

        inputs = services.registry.get(AnalysisJobType.ENGINE_SOUND_ANALYSIS).calls[0]
        stored = Path(inputs["audio_path"])
        assert stored.parent == upload_dir / USER_ID
        assert stored.suffix == ".mp3"
        assert stored.name != "engine.mp3"
        assert stored.read_bytes() == b"ID3audio"
        assert inputs["image_path"] is None

    def test_client_supplied_paths_are_never_used(self, api, services, upload_dir):
        _fund(services, "100")

        response = api.post(
            "/api/analysis-jobs",
            data={"job_type": "PAINT_ANALYSIS", "image_path": "/etc/passwd", "audio_path": "/root/.env"},
            headers=_auth(),
        )
        assert response.status_code == 200

        inputs = services.registry.get(AnalysisJobType.PAINT_ANALYSIS).calls[0]
        assert inputs["image_path"] is None
        assert inputs["audio_path"] is None

    def test_real_handler_never_reads_a_named_server_file(self, api, upload_dir):
        services = build_services(FakeDatabase(), handlers=stub_handlers(PAINT_ANALYSIS=PaintAnalysisHandler()))
        asyncio.run(services.catalog.seed_defaults())
        _fund(services, "100")
        api.app.state.services = services

        with patch("reportcredits.handlers.vehicle.chat_with_file", AsyncMock(return_value="{}")) as chat:
            response = api.post(
                "/api/analysis-jobs",
                data={"job_type": "PAINT_ANALYSIS", "image_path": "/etc/passwd"},
                headers=_auth(),
            )

        chat.assert_not_called()
        body = response.json()
        assert body["success"] is False
        assert body["refunded"] is True
        assert Decimal(api.get("/api/credits/balance", headers=_auth()).json()["balance"]) == Decimal("100.00")

    def test_oversized_upload_is_413(self, api, services, upload_dir, monkeypatch):
        _fund(services, "100")
        monkeypatch.setattr("reportcredits.routes.jobs.MAX_UPLOAD_BYTES", 4)

        response = api.post(
            "/api/analysis-jobs",
            data={"job_type": "PAINT_ANALYSIS"},
            files={"image": ("car.jpg", JPEG + b"more", "image/jpeg")},
            headers=_auth(),
        )

        assert response.status_code == 413
        assert services.registry.get(AnalysisJobType.PAINT_ANALYSIS).calls == []
        assert list(upload_dir.rglob("*.*")) == []

    def test_insufficient_credits_is_402(self, api, services, upload_dir):
        _fund(services, "10")

        response = api.post(
            "/api/analysis-jobs",
            data={"job_type": "PAINT_ANALYSIS"},
            files={"image": ("car.jpg", JPEG, "image/jpeg")},
            headers=_auth(),
        )

        assert response.status_code == 402
        assert response.json()["success"] is False
        assert response.json()["message"] == "Insufficient credit balance"
        assert list(upload_dir.rglob("*.jpg")) == []

    def test_handler_failure_is_200_with_refund(self, api, services):
        _fund(services, "100")
        services.registry.get(AnalysisJobType.DAMAGE_ANALYSIS).error = HandlerFailure("no car in photo")

        response = api.post("/api/analysis-jobs", data={"job_type": "DAMAGE_ANALYSIS"}, headers=_auth())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["refunded"] is True
        assert body["refund_status"] == "REFUNDED"
        balance = api.get("/api/credits/balance", headers=_auth()).json()
        assert Decimal(balance["available"]) == Decimal("100.00")

    def test_unavailable_job_type_is_400(self, api, services):
        _fund(services, "100")
        response = api.post("/api/analysis-jobs", data={"job_type": "VALUE_ESTIMATION"}, headers=_auth())
        assert response.status_code == 400

    def test_unknown_or_foreign_job_is_404(self, api, services):
        _fund(services, "100")
        created = api.post("/api/analysis-jobs", data={"job_type": "PAINT_ANALYSIS"}, headers=_auth()).json()

        assert api.get("/api/analysis-jobs/AJB-NOPE", headers=_auth()).status_code == 404
        assert api.get(f"/api/analysis-jobs/{created['job_id']}", headers=_auth("intruder")).status_code == 404


class TestAdmin:
    def test_add_and_deduct(self, api, services):
        added = api.post(f"/api/admin/credits/{USER_ID}/add", json={"amount": "50", "reason": "goodwill"}, headers=ADMIN)
        assert added.status_code == 200
        assert Decimal(added.json()["new_balance"]) == Decimal("50.00")

        deducted = api.post(f"/api/admin/credits/{USER_ID}/deduct", json={"amount": "20", "reason": "correction"}, headers=ADMIN)
        assert deducted.status_code == 200
        assert Decimal(deducted.json()["new_balance"]) == Decimal("30.00")

        too_much = api.post(f"/api/admin/credits/{USER_ID}/deduct", json={"amount": "31", "reason": "oops"}, headers=ADMIN)
        assert too_much.status_code == 400

        negative = api.post(f"/api/admin/credits/{USER_ID}/add", json={"amount": "-5", "reason": "bad"}, headers=ADMIN)
        assert negative.status_code == 400

    def test_reconciliation_endpoints(self, api):
        pending = api.get("/api/admin/reconciliation", headers=ADMIN)
        assert pending.status_code == 200
        assert pending.json() == {"jobs": [], "count": 0}

        run = api.post("/api/admin/reconciliation/run", headers=ADMIN)
        assert run.status_code == 200
        assert run.json()["resolved"] == 0

        assert api.post("/api/admin/reconciliation/AJB-NOPE", headers=ADMIN).status_code == 404

    def test_reconciling_a_healthy_job_changes_nothing(self, api, services):
        _fund(services, "100")
        created = api.post("/api/analysis-jobs", data={"job_type": "PAINT_ANALYSIS"}, headers=_auth()).json()

        response = api.post(f"/api/admin/reconciliation/{created['job_id']}", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["resolved"] is False
        assert response.json()["reconciliation_status"] == "NONE"
        job = api.get(f"/api/analysis-jobs/{created['job_id']}", headers=_auth()).json()
        assert job["reconciliation_status"] == "NONE"
