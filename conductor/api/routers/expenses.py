"""
Expenses Router

Receipt upload with OCR, text-only extraction, policy evaluation and fraud
analysis. Tenant-scoped: the tenant comes from TenantRoutingMiddleware.
"""
from datetime import date
from typing import Any, Dict, List, Optional
import hashlib
import time

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.api.dependencies import get_tenant_db, limiter, require_tenant
from conductor.core.config import settings
from conductor.core.database import get_db
from conductor.core.exceptions import DuplicateDocumentError
from conductor.expenses.fraud_detection import FraudDetectionService
from conductor.expenses.ocr import (
    OCRService,
    check_duplicate_document,
    extract_expense_data,
    save_document,
    validate_extracted_data,
)
from conductor.expenses.policy_engine import (
    OPERATORS,
    PolicyAction,
    PolicyCondition,
    PolicyEngineService,
    PolicyRule,
)
from conductor.expenses.report import ExpenseItem, ExpenseReport
from conductor.middleware.logging_config import get_logger, log_business_event
from conductor.models.tenant import Tenant
from conductor.services.metrics_service import metrics_service
from conductor.tenancy.resources import collect_usage, enforce, get_quota

logger = get_logger(__name__)

router = APIRouter(prefix="/api/expenses", tags=["expenses"])

ocr_service = OCRService()


# ==================== Request Models ====================

class ExpenseItemModel(BaseModel):
    id: str
    amount: float = Field(..., gt=0)
    expense_date: date
    vendor: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    receipt_url: Optional[str] = None
    ocr_confidence: Optional[float] = Field(None, ge=0, le=1)
    has_business_purpose: bool = False
    weekend_business_justification: Optional[str] = None
    city: Optional[str] = None

    def to_item(self) -> ExpenseItem:
        return ExpenseItem(**self.model_dump())


class ExpenseReportModel(BaseModel):
    id: str
    employee_id: Optional[str] = None
    submission_date: Optional[date] = None
    department_id: Optional[str] = None
    cost_center_id: Optional[str] = None
    project_id: Optional[str] = None
    items: List[ExpenseItemModel] = Field(..., min_length=1)

    def to_report(self) -> ExpenseReport:
        data = self.model_dump(exclude={"items"})
        return ExpenseReport(items=[item.to_item() for item in self.items], **data)


class PolicyConditionModel(BaseModel):
    field: str
    operator: str = Field(..., description=f"One of {', '.join(OPERATORS)}")
    value: Any = None
    group_id: str = "default"


class PolicyActionModel(BaseModel):
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None


class PolicyRuleModel(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = "limit"
    priority: int = 0
    is_active: bool = True
    conditions: List[PolicyConditionModel] = Field(default_factory=list)
    actions: List[PolicyActionModel] = Field(default_factory=list)
    violation_level: str = Field("warning", pattern=r"^(info|warning|error|critical)$")

    def to_rule(self) -> PolicyRule:
        return PolicyRule(
            id=self.id,
            name=self.name,
            description=self.description,
            category=self.category,
            priority=self.priority,
            is_active=self.is_active,
            conditions=[PolicyCondition(**c.model_dump()) for c in self.conditions],
            actions=[PolicyAction(**a.model_dump()) for a in self.actions],
            violation_level=self.violation_level,
        )


class PolicyEvaluationRequest(BaseModel):
    report: ExpenseReportModel
    policies: Optional[List[PolicyRuleModel]] = Field(None, description="Defaults to the built-in policies")


class ExtractRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=100_000)


# ==================== Endpoints ====================

@router.post("/documents", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_db),
    tenant_db: AsyncSession = Depends(get_tenant_db),
):
    """
    Upload a receipt or invoice (image or PDF), OCR it and store the result.

    Rejects documents already submitted (same SHA256) and uploads that would
    exceed the plan's storage quota.
    """
    content = await file.read()
    mime_type = file.content_type or "application/octet-stream"
    file_name = file.filename or "document"
    ocr_service.validate_input(content, mime_type)

    document_hash = hashlib.sha256(content).hexdigest()
    if await check_duplicate_document(tenant_db, document_hash):
        raise DuplicateDocumentError(
            "Document was already submitted", details={"document_hash": document_hash}
        )

    usage = await collect_usage(db, tenant, tenant_db)
    enforce(get_quota(tenant.plan), usage, "storage", increment=round(len(content) / (1024 * 1024), 4))

    start = time.time()
    result = await ocr_service.process_document(content, mime_type, file_name)
    document = await save_document(tenant_db, tenant.id, result, file_name, mime_type, len(content))

    metrics_service.increment(tenant.id, "documents_processed")
    metrics_service.record_timing(tenant.id, "ocr", (time.time() - start) * 1000)
    log_business_event(
        "expense_document_processed",
        tenant_id=str(tenant.id),
        document_id=str(document.id),
        confidence=result.confidence,
        needs_review=result.needs_review,
    )

    return {"document": document.to_dict(), "ocr": result.to_dict()}


@router.post("/extract")
async def extract_from_text(payload: ExtractRequest, tenant: Tenant = Depends(require_tenant)):
    """Run field extraction and validation over already-recognised text."""
    data = extract_expense_data(payload.text)
    is_valid, errors, warnings = validate_extracted_data(data, min_confidence=settings.ocr_min_confidence)
    metrics_service.increment(tenant.id, "text_extractions")
    return {
        "extracted_data": data.to_dict(),
        "validation": {"is_valid": is_valid, "errors": errors, "warnings": warnings},
    }


@router.post("/policies/evaluate")
async def evaluate_policies(payload: PolicyEvaluationRequest, tenant: Tenant = Depends(require_tenant)):
    policies = [p.to_rule() for p in payload.policies] if payload.policies is not None else None
    result = PolicyEngineService().evaluate_report(payload.report.to_report(), policies)
    metrics_service.increment(tenant.id, "policy_evaluations")
    return result.to_dict()


@router.post("/fraud-analysis")
async def fraud_analysis(payload: ExpenseReportModel, tenant: Tenant = Depends(require_tenant)):
    result = FraudDetectionService().analyze(payload.to_report())
    metrics_service.increment(tenant.id, "fraud_analyses")
    if result.is_high_risk:
        logger.warning(
            "high_risk_expense_report",
            tenant_id=str(tenant.id),
            report_id=payload.id,
            risk_score=result.overall_risk_score,
        )
    return result.to_dict()
