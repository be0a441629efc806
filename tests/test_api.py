"""
API Tests

Tests:
- Health, root and error envelope
- Admin key authentication on the SaaS admin router
- Brazilian document validation endpoints
- Tenant-scoped routes: SLA lifecycle, tags, metrics, expenses
- Receipt upload with OCR mocked: duplicates and storage quota
"""

import hashlib
from datetime import datetime, timedelta
import uuid
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
import pytesseract
from fastapi.testclient import TestClient

from conductor.api import dependencies
from conductor.core.config import settings
from conductor.core.database import get_db, get_pool_status
from conductor.core.exceptions import QuotaExceededError, SlaDefinitionError, TenantNotFoundError
from conductor.main import app, validate_admin_key
from conductor.middleware.error_handling import (
    ConflictError,
    ExternalServiceError,
    ValidationError,
    create_error_response,
    domain_error_status,
)
from conductor.middleware import tenant_routing
from conductor.middleware.tenant_routing import TenantIdentificationRateLimiter, TenantRoutingMiddleware, hash_api_key
from conductor.models.tenant import Tenant
from conductor.models.ticket import Ticket
from conductor.tenancy.resources import ResourceUsage
from tests.conftest import assert_error_format, make_png

RECEIPT_TEXT = """PADARIA PAO QUENTE LTDA
CNPJ 11.222.333/0001-81
TOTAL R$ 53,40
PIX
"""

REPORT = {
    "id": "rep-2026-10",
    "employee_id": "emp-42",
    "submission_date": "2026-10-14",
    "items": [
        {"id": "i1", "amount": 150.0, "expense_date": "2026-10-13", "category": "meals",
         "vendor": "Restaurante", "description": "Jantar com cliente e cerveja",
         "receipt_url": "https://files.example.com/i1.png"},
    ],
}


@pytest.fixture
def client():
    """Synchronous client; no lifespan so Redis and the admin key check stay off"""
    return TestClient(app)


@pytest_asyncio.fixture
async def ticket(db_session, tenant):
    ticket = Ticket(
        tenant_id=tenant.id,
        number="CHM-000001",
        subject="Impressora não imprime",
        priority="high",
        tags=["hardware"],
    )
    db_session.add(ticket)
    await db_session.commit()
    return ticket


class TestPublicEndpoints:
    """Test endpoints without tenant or admin context"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_pool_status_configuration(self):
        status = get_pool_status()

        assert status["checked_out"] == 0
        assert status["configuration"]["max_total"] == settings.db_pool_size + settings.db_max_overflow

    def test_root(self, client):
        body = client.get("/").json()

        assert body["service"] == "Conductor API"
        assert body["docs"] == "/docs"

    def test_unknown_route_envelope(self, client):
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert_error_format(response.json(), "HTTP_ERROR")

    def test_tenant_route_requires_identification(self, client):
        response = client.get("/api/metrics/summary")

        assert response.status_code == 401
        assert_error_format(response.json(), "AUTHENTICATION_ERROR")


class TestAdminAuthentication:
    """Test the SaaS admin key"""

    def test_valid_key(self, client, admin_key):
        response = client.get("/api/saas-admin/plans", headers={"X-API-Key": admin_key})

        assert response.status_code == 200
        plans = response.json()["plans"]
        assert set(plans) == {"free", "basic", "premium", "enterprise"}

    def test_missing_key(self, client, admin_key):
        response = client.get("/api/saas-admin/plans")

        assert response.status_code == 401
        assert_error_format(response.json(), "AUTHENTICATION_ERROR")

    def test_wrong_key(self, client, admin_key):
        # A non-admin key is looked up as a tenant key first
        with patch.object(TenantRoutingMiddleware, "_identify", new=AsyncMock(return_value=None)):
            response = client.get("/api/saas-admin/plans", headers={"X-API-Key": "wrong-key-0123456789"})

        assert response.status_code == 403
        assert_error_format(response.json(), "AUTHORIZATION_ERROR")

    def test_admin_key_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(dependencies.settings, "admin_key", None)

        response = client.get("/api/saas-admin/plans")

        assert response.status_code == 503
        assert_error_format(response.json(), "SERVICE_UNAVAILABLE")

    @pytest.mark.parametrize("key", [None, "", "short-key"])
    def test_startup_rejects_weak_keys(self, key):
        with pytest.raises(RuntimeError):
            validate_admin_key(key)

    def test_startup_accepts_strong_key(self):
        validate_admin_key("f3b8c2d9e1a7465b9c0d")


class TestTenantCredentials:
    """Test that a subdomain selects a tenant but never grants access"""

    HOST = {"host": "acme.conductor.app"}

    @pytest.fixture
    def identified(self, tenant):
        tenant.api_key_hash = hash_api_key("acme-tenant-key")

        async def no_db():
            yield None

        app.dependency_overrides[get_db] = no_db
        with patch.object(TenantRoutingMiddleware, "_identify", new=AsyncMock(return_value=tenant.id)), \
                patch.object(Tenant, "get_by_id", new=AsyncMock(return_value=tenant)):
            yield tenant
        app.dependency_overrides.clear()

    def test_subdomain_without_key(self, client, identified):
        response = client.get("/api/metrics/summary", headers=self.HOST)

        assert response.status_code == 401
        assert_error_format(response.json(), "AUTHENTICATION_ERROR")

    def test_subdomain_with_another_tenants_key(self, client, identified):
        response = client.get("/api/metrics/summary", headers={**self.HOST, "X-API-Key": "other-tenant-key"})

        assert response.status_code == 403
        assert_error_format(response.json(), "AUTHORIZATION_ERROR")

    def test_subdomain_with_tenant_key(self, client, identified):
        response = client.get("/api/metrics/summary", headers={**self.HOST, "X-API-Key": "acme-tenant-key"})

        assert response.status_code == 200
        assert response.json()["tenant_id"] == str(identified.id)


class TestRoutingCorrelation:
    """Test that tenant routing rejections carry the request correlation ID"""

    HEADERS = {"X-API-Key": "tenant-key", "X-Correlation-ID": "corr-7f3a"}

    def test_lookup_failure(self, client):
        failing = AsyncMock(side_effect=ConnectionError("database unreachable"))
        with patch.object(TenantRoutingMiddleware, "_identify", new=failing):
            response = client.get("/api/metrics/summary", headers=self.HEADERS)

        assert response.status_code == 503
        assert response.headers["X-Correlation-ID"] == "corr-7f3a"
        assert response.json()["error"]["correlation_id"] == "corr-7f3a"

    def test_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(tenant_routing, "rate_limiter", TenantIdentificationRateLimiter(per_minute=1))

        with patch.object(TenantRoutingMiddleware, "_identify", new=AsyncMock(return_value=None)):
            client.get("/api/metrics/summary", headers=self.HEADERS)
            response = client.get("/api/metrics/summary", headers=self.HEADERS)

        assert response.status_code == 429
        assert response.headers["X-Correlation-ID"] == "corr-7f3a"
        assert_error_format(response.json(), "RATE_LIMIT_EXCEEDED")
        assert response.json()["error"]["correlation_id"] == "corr-7f3a"


class TestErrorMapping:
    """Test domain exception to HTTP mapping"""

    @pytest.mark.parametrize("error,expected", [
        (TenantNotFoundError("x"), (404, "TENANT_NOT_FOUND")),
        (QuotaExceededError("x"), (429, "QUOTA_EXCEEDED")),
        (SlaDefinitionError("x"), (400, "SLA_DEFINITION_INVALID")),
        (SlaDefinitionError("x", conflict=True), (409, "SLA_DEFINITION_IN_USE")),
    ])
    def test_domain_status(self, error, expected):
        assert domain_error_status(error) == expected

    @pytest.mark.parametrize("error,expected", [
        (ValidationError("Bad field", field="plan"), (400, "VALIDATION_ERROR", {"field": "plan"})),
        (ConflictError("Already running", slug="acme"), (409, "CONFLICT", {"slug": "acme"})),
        (ExternalServiceError("tesseract", operation="image_to_data"),
         (502, "EXTERNAL_SERVICE_ERROR", {"service": "tesseract", "operation": "image_to_data"})),
    ])
    def test_api_error_status(self, error, expected):
        body, status_code = create_error_response(error)

        assert (status_code, body["error"]["code"], body["error"]["details"]) == expected

    def test_external_service_message(self):
        assert ExternalServiceError("redis").message == "External service error: redis"
        assert ExternalServiceError("tesseract", "ocr").message == "External service error: tesseract (ocr)"

    def test_timestamp_is_utc_aware(self):
        body, _ = create_error_response(RuntimeError("boom"))

        assert datetime.fromisoformat(body["timestamp"]).utcoffset() == timedelta(0)

    def test_unexpected_error(self):
        body, status_code = create_error_response(RuntimeError("boom"), correlation_id="abc-123")

        assert status_code == 500
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert body["error"]["details"] == {"error_type": "RuntimeError"}
        assert body["error"]["correlation_id"] == "abc-123"


class TestValidationEndpoints:
    """Test /api/validation"""

    def test_valid_cpf(self, client):
        response = client.post("/api/validation/documents", json={"document_type": "cpf", "value": "52998224725"})

        assert response.status_code == 200
        assert response.json() == {
            "is_valid": True,
            "document_type": "cpf",
            "formatted": "529.982.247-25",
            "message": None,
        }

    def test_invalid_cnpj(self, client):
        response = client.post("/api/validation/documents",
                               json={"document_type": "cnpj", "value": "11.222.333/0001-82"})

        assert response.status_code == 200
        assert response.json()["is_valid"] is False

    def test_unknown_document_type(self, client):
        response = client.post("/api/validation/documents", json={"document_type": "passport", "value": "X1"})

        assert response.status_code == 422
        body = response.json()
        assert_error_format(body, "VALIDATION_ERROR")
        assert body["error"]["details"]["validation_errors"][0]["field"] == "body.document_type"

    def test_mask(self, client):
        response = client.post("/api/validation/mask", json={"value": "1122233300018"})

        assert response.json() == {"masked": "11.222.333/0001-8"}


class TestSlaEndpoints:
    """Test the SLA routes for a tenant"""

    DEFINITION = {
        "name": "Padrão 24x7",
        "business_hours_only": False,
        "time_targets": [{"metric": "response_time", "target": 1, "unit": "hours"}],
    }

    async def test_lifecycle(self, tenant_client, ticket):
        response = await tenant_client.post("/api/sla/definitions", json=self.DEFINITION)
        assert response.status_code == 201
        definition = response.json()
        assert definition["response_time_minutes"] == 60

        response = await tenant_client.post(f"/api/sla/tickets/{ticket.id}/start")
        assert response.status_code == 201
        [instance] = response.json()["instances"]
        assert instance["status"] == "running"
        instance_url = f"/api/sla/instances/{instance['id']}"

        response = await tenant_client.post(f"{instance_url}/pause", json={"reason": "Aguardando cliente"})
        assert response.json()["status"] == "paused"

        response = await tenant_client.post(f"{instance_url}/pause")
        assert response.status_code == 409
        assert_error_format(response.json(), "SLA_INVALID_STATE")

        assert (await tenant_client.post(f"{instance_url}/resume")).json()["status"] == "running"

        completed = (await tenant_client.post(f"{instance_url}/complete")).json()
        assert completed["status"] == "completed"
        assert completed["is_breached"] is False

        events = (await tenant_client.get(f"{instance_url}/events")).json()["events"]
        assert [e["event_type"] for e in events] == ["started", "paused", "resumed", "completed"]

        compliance = (await tenant_client.get("/api/sla/compliance")).json()
        assert compliance["met"] == 1
        assert compliance["compliance_rate"] == 100.0

        response = await tenant_client.delete(f"/api/sla/definitions/{definition['id']}")
        assert response.json()["status"] == "deactivated", "Definitions with history are kept"

    async def test_list_and_get(self, tenant_client):
        created = (await tenant_client.post("/api/sla/definitions", json=self.DEFINITION)).json()

        listing = (await tenant_client.get("/api/sla/definitions")).json()
        fetched = (await tenant_client.get(f"/api/sla/definitions/{created['id']}")).json()

        assert listing["total"] == 1
        assert fetched["name"] == "Padrão 24x7"

    async def test_invalid_definition(self, tenant_client):
        response = await tenant_client.post("/api/sla/definitions", json={"name": ""})

        assert response.status_code == 400
        assert_error_format(response.json(), "SLA_DEFINITION_INVALID")

    async def test_unknown_definition(self, tenant_client):
        response = await tenant_client.get(f"/api/sla/definitions/{uuid.uuid4()}")

        assert response.status_code == 404
        assert_error_format(response.json(), "SLA_NOT_FOUND")

    async def test_unknown_ticket(self, tenant_client):
        response = await tenant_client.post(f"/api/sla/tickets/{uuid.uuid4()}/start")

        assert response.status_code == 404
        assert_error_format(response.json(), "NOT_FOUND")

    async def test_delete_in_use(self, tenant_client, ticket):
        definition = (await tenant_client.post("/api/sla/definitions", json=self.DEFINITION)).json()
        await tenant_client.post(f"/api/sla/tickets/{ticket.id}/start")

        response = await tenant_client.delete(f"/api/sla/definitions/{definition['id']}")

        assert response.status_code == 409
        assert_error_format(response.json(), "SLA_DEFINITION_IN_USE")

    async def test_check_breaches(self, tenant_client, ticket):
        await tenant_client.post("/api/sla/definitions", json=self.DEFINITION)
        await tenant_client.post(f"/api/sla/tickets/{ticket.id}/start")

        counts = (await tenant_client.post("/api/sla/check-breaches",
                                           json={"now": "2099-01-01T00:00:00+00:00"})).json()

        assert counts == {"checked": 1, "violated": 1, "escalated": 0, "updated": 0}

    async def test_validate_payloads(self, tenant_client):
        definition = (await tenant_client.post("/api/sla/definitions/validate", json={"name": ""})).json()
        workflow = (await tenant_client.post("/api/sla/workflows/validate", json={
            "name": "Notificar",
            "triggers": [{"type": "sla_warning"}],
            "actions": [{"type": "webhook", "config": {"url": "https://hooks.example.com/sla"}}],
        })).json()

        assert definition["is_valid"] is False
        assert workflow == {"is_valid": True, "errors": []}

    async def test_validate_reports_wrong_types(self, tenant_client):
        definition = await tenant_client.post("/api/sla/definitions/validate", json={
            "name": "x", "response_time_minutes": 10, "escalation_threshold_percent": "high",
        })
        workflow = await tenant_client.post("/api/sla/workflows/validate", json={
            "name": "x", "triggers": [{"type": "sla_breach"}], "actions": ["escalate"],
        })

        assert definition.status_code == 200
        assert definition.json() == {
            "is_valid": False,
            "errors": ["escalation_threshold_percent must be a number between 1 and 100"],
        }
        assert workflow.status_code == 200
        assert workflow.json() == {"is_valid": False, "errors": ["Action at index 0 must be an object"]}

    async def test_bad_calendar_is_rejected(self, tenant_client):
        response = await tenant_client.post("/api/sla/definitions", json={**self.DEFINITION, "timezone": "Mars/Olympus"})

        assert response.status_code == 400
        body = response.json()
        assert_error_format(body, "SLA_DEFINITION_INVALID")
        assert body["error"]["details"]["errors"] == ["Unknown timezone: 'Mars/Olympus'"]

        listed = (await tenant_client.get("/api/sla/definitions")).json()
        assert listed["total"] == 0


class TestTagsAndMetrics:
    """Test tag suggestions and the per-tenant metrics summary"""

    async def test_suggest_uses_tenant_frequencies(self, tenant_client, ticket, tenant):
        response = await tenant_client.post("/api/tags/suggest", json={
            "text": "Impressora e computador com problema, sistema lento",
        })

        suggestions = response.json()["suggestions"]
        assert [(s["tag"], s["confidence"]) for s in suggestions] == [("hardware", 0.8), ("software", 0.55)]

        summary = (await tenant_client.get("/api/metrics/summary")).json()
        assert summary["tenant_id"] == str(tenant.id)
        assert summary["counters"] == {"tag_suggestions": 1}

    async def test_suggest_requires_text(self, tenant_client):
        response = await tenant_client.post("/api/tags/suggest", json={"text": ""})

        assert response.status_code == 422


class TestExpenseEndpoints:
    """Test extraction, policies and fraud analysis routes"""

    async def test_extract(self, tenant_client):
        body = (await tenant_client.post("/api/expenses/extract", json={"text": RECEIPT_TEXT})).json()

        assert body["extracted_data"]["amount"] == "53.40"
        assert body["extracted_data"]["merchant_name"] == "PADARIA PAO QUENTE LTDA"
        assert body["extracted_data"]["payment_method"] == "pix"
        assert body["validation"]["is_valid"] is True
        assert "Expense date not found" in body["validation"]["warnings"]

    async def test_default_policies(self, tenant_client):
        body = (await tenant_client.post("/api/expenses/policies/evaluate", json={"report": REPORT})).json()

        assert [v["rule_id"] for v in body["violations"]] == ["daily-limit-meals"]
        assert body["is_compliant"] is True

    async def test_custom_policies(self, tenant_client):
        policies = [{
            "id": "no-alcohol",
            "name": "Sem bebidas alcoólicas",
            "conditions": [{"field": "description", "operator": "contains", "value": "cerveja"}],
            "actions": [{"type": "block"}],
            "violation_level": "error",
        }]

        body = (await tenant_client.post("/api/expenses/policies/evaluate",
                                         json={"report": REPORT, "policies": policies})).json()

        assert body["is_compliant"] is False
        assert body["compliance_score"] == 0
        assert body["required_actions"][0]["type"] == "block"

    async def test_invalid_violation_level(self, tenant_client):
        policies = [{"id": "p", "name": "p", "violation_level": "fatal"}]

        response = await tenant_client.post("/api/expenses/policies/evaluate",
                                            json={"report": REPORT, "policies": policies})

        assert response.status_code == 422

    async def test_fraud_analysis(self, tenant_client):
        item = {"amount": 80.0, "expense_date": "2026-10-13", "vendor": "Uber",
                "receipt_url": "https://files.example.com/r.png"}
        report = {"id": "rep-1", "submission_date": "2026-10-14",
                  "items": [{"id": "a", **item}, {"id": "b", **item}]}

        body = (await tenant_client.post("/api/expenses/fraud-analysis", json=report)).json()

        assert body["overall_risk_score"] == 56.67
        assert body["summary"]["by_type"] == {"duplicate_expense": 2}
        assert "reject_expense" in body["required_actions"]

    async def test_report_needs_items(self, tenant_client):
        response = await tenant_client.post("/api/expenses/fraud-analysis", json={"id": "rep-1", "items": []})

        assert response.status_code == 422


class TestDocumentUpload:
    """Test receipt upload with Tesseract and usage collection mocked"""

    @staticmethod
    def _ocr_patches(usage=None):
        return (
            patch("conductor.api.routers.expenses.collect_usage",
                  new=AsyncMock(return_value=usage or ResourceUsage())),
            patch("conductor.expenses.ocr.pytesseract.image_to_data",
                  return_value={"conf": ["90", "85", "-1"]}),
            patch("conductor.expenses.ocr.pytesseract.image_to_string", return_value=RECEIPT_TEXT),
        )

    async def test_upload_then_duplicate(self, tenant_client, tenant):
        content = make_png()
        usage_patch, data_patch, text_patch = self._ocr_patches()

        with usage_patch, data_patch, text_patch:
            first = await tenant_client.post("/api/expenses/documents",
                                             files={"file": ("receipt.png", content, "image/png")})
            second = await tenant_client.post("/api/expenses/documents",
                                              files={"file": ("copy.png", content, "image/png")})

        assert first.status_code == 201
        body = first.json()
        assert body["document"]["document_hash"] == hashlib.sha256(content).hexdigest()
        assert body["document"]["file_name"] == "receipt.png"
        assert body["ocr"]["confidence"] == 0.875
        assert body["ocr"]["extracted_data"]["merchant_cnpj"] == "11.222.333/0001-81"

        assert second.status_code == 409
        assert_error_format(second.json(), "DUPLICATE_DOCUMENT")

        summary = (await tenant_client.get("/api/metrics/summary")).json()
        assert summary["counters"]["documents_processed"] == 1
        assert summary["timings"]["ocr"]["count"] == 1

    async def test_storage_quota(self, tenant_client):
        usage_patch, data_patch, text_patch = self._ocr_patches(ResourceUsage(storage_mb=150.0))

        with usage_patch, data_patch, text_patch:
            response = await tenant_client.post("/api/expenses/documents",
                                                files={"file": ("receipt.png", make_png(), "image/png")})

        assert response.status_code == 429
        assert_error_format(response.json(), "QUOTA_EXCEEDED")

    async def test_unsupported_type(self, tenant_client):
        response = await tenant_client.post("/api/expenses/documents",
                                            files={"file": ("notes.txt", b"hello", "text/plain")})

        assert response.status_code == 400
        assert_error_format(response.json(), "DOCUMENT_INVALID")

    async def test_ocr_failure(self, tenant_client):
        usage_patch, _, _ = self._ocr_patches()
        failing = patch("conductor.expenses.ocr.pytesseract.image_to_data",
                        side_effect=pytesseract.TesseractNotFoundError())

        with usage_patch, failing:
            response = await tenant_client.post("/api/expenses/documents",
                                                files={"file": ("receipt.png", make_png(), "image/png")})

        assert response.status_code == 502
        assert_error_format(response.json(), "OCR_FAILED")
