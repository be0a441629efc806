"""
Expense Fraud Detection

Rule-based checks over the items of one expense report:
- duplicates (exact and near) inside the report
- missing or low-quality receipts
- behavioural patterns (month-end bulk submissions, round amounts)
- amounts just under approval thresholds and expense splitting
- policy-flavoured checks (meals, weekends)
- timing (old expenses) and location (several cities on one date)

Each rule produces FraudAlert objects; the overall score weights alert
risk by severity.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
import logging
import uuid

from conductor.expenses.report import ExpenseItem, ExpenseReport
from conductor.middleware.metrics import track_fraud_analysis

logger = logging.getLogger(__name__)

SEVERITY_MULTIPLIER = {"low": 1, "medium": 1.5, "high": 2, "critical": 3}
APPROVAL_THRESHOLDS = (100, 250, 500, 1000, 2500)

DUPLICATE_EXPENSE = "duplicate_expense"
FABRICATED_RECEIPT = "fabricated_receipt"
AMOUNT_MANIPULATION = "amount_manipulation"
POLICY_VIOLATION = "policy_violation"
BEHAVIORAL_ANOMALY = "behavioral_anomaly"
TIMING_ANOMALY = "timing_anomaly"
LOCATION_INCONSISTENCY = "location_inconsistency"
EXPENSE_SPLITTING = "expense_splitting"

REVIEW_MANUALLY = "review_manually"
REQUEST_ADDITIONAL_DOCS = "request_additional_docs"
REJECT_EXPENSE = "reject_expense"
FLAG_FOR_INVESTIGATION = "flag_for_investigation"
ESCALATE_TO_MANAGER = "escalate_to_manager"
BLOCK_USER = "block_user"
AUDIT_HISTORICAL = "audit_historical"


@dataclass
class FraudAlert:
    alert_type: str
    severity: str
    risk_score: int
    description: str
    recommended_action: str
    expense_report_id: Optional[str] = None
    expense_item_id: Optional[str] = None
    evidence: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = "pending"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "risk_score": self.risk_score,
            "description": self.description,
            "recommended_action": self.recommended_action,
            "expense_report_id": self.expense_report_id,
            "expense_item_id": self.expense_item_id,
            "evidence": self.evidence,
            "status": self.status,
        }


@dataclass
class FraudAnalysisResult:
    overall_risk_score: float
    alerts: List[FraudAlert]
    recommendations: List[str]
    required_actions: List[str]
    summary: Dict[str, Any]

    @property
    def is_high_risk(self) -> bool:
        return self.overall_risk_score >= 70

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_risk_score": self.overall_risk_score,
            "is_high_risk": self.is_high_risk,
            "alerts": [alert.to_dict() for alert in self.alerts],
            "recommendations": self.recommendations,
            "required_actions": self.required_actions,
            "summary": self.summary,
        }


def _same_slot(a: ExpenseItem, b: ExpenseItem) -> bool:
    return a.id != b.id and a.expense_date == b.expense_date and a.vendor == b.vendor


class FraudDetectionService:
    def __init__(self, today: date = None):
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def analyze(self, report: ExpenseReport) -> FraudAnalysisResult:
        logger.info(f"Running fraud detection for report {report.id} ({len(report.items)} items)")

        alerts: List[FraudAlert] = []
        alerts += self.detect_duplicates(report)
        alerts += self.detect_document_fraud(report)
        alerts += self.detect_behavioral_anomalies(report)
        alerts += self.detect_amount_manipulation(report)
        alerts += self.detect_policy_violations(report)
        alerts += self.detect_timing_anomalies(report)
        alerts += self.detect_location_inconsistencies(report)

        score = overall_risk_score(alerts)
        result = FraudAnalysisResult(
            overall_risk_score=score,
            alerts=alerts,
            recommendations=recommendations(alerts, score),
            required_actions=required_actions(alerts, score),
            summary=summarize(alerts),
        )

        track_fraud_analysis(score)
        logger.info(f"Fraud detection for report {report.id}: score={score}, alerts={len(alerts)}")
        return result

    # ==================== Rules ====================

    def detect_duplicates(self, report: ExpenseReport) -> List[FraudAlert]:
        """Exact duplicates take precedence; near duplicates exclude exact ones."""
        alerts = []
        for item in report.items:
            exact = [o for o in report.items if _same_slot(item, o) and abs(o.amount - item.amount) < 0.01]
            near = [
                o for o in report.items
                if _same_slot(item, o) and o not in exact and abs(o.amount - item.amount) < item.amount * 0.05
            ]

            if exact:
                alerts.append(FraudAlert(
                    DUPLICATE_EXPENSE, "high", 85,
                    f"Exact duplicate expense detected: {len(exact)} identical items found",
                    REJECT_EXPENSE, report.id, item.id,
                    {"duplicate_ids": [o.id for o in exact], "confidence": 0.95},
                ))
            if near:
                alerts.append(FraudAlert(
                    DUPLICATE_EXPENSE, "medium", 65,
                    "Potential duplicate expense: similar amounts and vendor on the same date",
                    REVIEW_MANUALLY, report.id, item.id,
                    {"near_duplicate_ids": [o.id for o in near],
                     "amount_variance": [round(abs(o.amount - item.amount), 2) for o in near],
                     "confidence": 0.75},
                ))
        return alerts

    def detect_document_fraud(self, report: ExpenseReport) -> List[FraudAlert]:
        alerts = []
        for item in report.items:
            if not item.receipt_url and item.amount > 25:
                alerts.append(FraudAlert(
                    FABRICATED_RECEIPT, "medium", 55,
                    "Missing receipt for expense over 25",
                    REQUEST_ADDITIONAL_DOCS, report.id, item.id,
                    {"amount": item.amount, "receipt_required": True},
                ))
            if item.receipt_url and item.ocr_confidence is not None and item.ocr_confidence < 0.6:
                alerts.append(FraudAlert(
                    FABRICATED_RECEIPT, "medium", 60,
                    "Low OCR confidence suggests poor document quality or potential fabrication",
                    REVIEW_MANUALLY, report.id, item.id,
                    {"ocr_confidence": item.ocr_confidence, "threshold": 0.6},
                ))
        return alerts

    def detect_behavioral_anomalies(self, report: ExpenseReport) -> List[FraudAlert]:
        alerts = []
        total = report.total_amount
        submission = report.submission_date or self.today

        if submission.day > 28 and len(report.items) > 15 and total > 2000:
            alerts.append(FraudAlert(
                BEHAVIORAL_ANOMALY, "medium", 50,
                f"Bulk submission at month end: {len(report.items)} items totaling {total:.2f}",
                REVIEW_MANUALLY, report.id,
                evidence={"item_count": len(report.items), "total_amount": total, "submission_day": submission.day},
            ))

        round_items = [item for item in report.items if float(item.amount).is_integer() and item.amount >= 50]
        if len(round_items) > 3:
            alerts.append(FraudAlert(
                BEHAVIORAL_ANOMALY, "low", 35,
                f"Unusual pattern of round-number amounts: {len(round_items)} expenses",
                REVIEW_MANUALLY, report.id,
                evidence={"round_amounts": [item.amount for item in round_items]},
            ))
        return alerts

    def detect_amount_manipulation(self, report: ExpenseReport) -> List[FraudAlert]:
        alerts = []
        for item in report.items:
            for threshold in APPROVAL_THRESHOLDS:
                if threshold - 5 <= item.amount < threshold:
                    alerts.append(FraudAlert(
                        AMOUNT_MANIPULATION, "medium", 55,
                        f"Amount appears designed to avoid approval threshold of {threshold}",
                        REVIEW_MANUALLY, report.id, item.id,
                        {"amount": item.amount, "threshold": threshold,
                         "difference": round(threshold - item.amount, 2)},
                    ))
                    break

            splits = [o for o in report.items if _same_slot(item, o) and o.amount < 100]
            if len(splits) >= 2 and item.amount < 100:
                total_split = round(sum(o.amount for o in splits) + item.amount, 2)
                alerts.append(FraudAlert(
                    EXPENSE_SPLITTING, "high", 75,
                    f"Potential expense splitting: {len(splits) + 1} expenses from the same vendor "
                    f"on the same day totaling {total_split:.2f}",
                    ESCALATE_TO_MANAGER, report.id, item.id,
                    {"split_count": len(splits) + 1, "total_amount": total_split},
                ))
        return alerts

    def detect_policy_violations(self, report: ExpenseReport) -> List[FraudAlert]:
        alerts = []
        for item in report.items:
            if (item.category or "").lower() == "meals" and item.amount > 50 and not item.has_business_purpose:
                alerts.append(FraudAlert(
                    POLICY_VIOLATION, "medium", 45,
                    "High-value meal expense without documented business purpose",
                    REQUEST_ADDITIONAL_DOCS, report.id, item.id,
                    {"amount": item.amount, "limit": 50},
                ))
            if item.is_weekend and item.amount > 100 and not item.weekend_business_justification:
                alerts.append(FraudAlert(
                    POLICY_VIOLATION, "medium", 50,
                    "High-value weekend expense without business justification",
                    REQUEST_ADDITIONAL_DOCS, report.id, item.id,
                    {"amount": item.amount, "expense_date": item.expense_date.isoformat()},
                ))
        return alerts

    def detect_timing_anomalies(self, report: ExpenseReport) -> List[FraudAlert]:
        ages = [(self.today - item.expense_date).days for item in report.items]
        old = [age for age in ages if age > 60]
        if len(old) > 5:
            return [FraudAlert(
                TIMING_ANOMALY, "medium", 45,
                f"Multiple old expenses being submitted: {len(old)} expenses over 60 days old",
                REVIEW_MANUALLY, report.id,
                evidence={"old_expense_count": len(old), "oldest_expense_age_days": max(old)},
            )]
        return []

    def detect_location_inconsistencies(self, report: ExpenseReport) -> List[FraudAlert]:
        cities_by_date = defaultdict(set)
        for item in report.items:
            if item.city:
                cities_by_date[item.expense_date].add(item.city)

        alerts = []
        for expense_date, cities in sorted(cities_by_date.items()):
            if len(cities) > 1:
                alerts.append(FraudAlert(
                    LOCATION_INCONSISTENCY, "high", 80,
                    f"Expenses in multiple cities on the same date: {', '.join(sorted(cities))}",
                    FLAG_FOR_INVESTIGATION, report.id,
                    evidence={"date": expense_date.isoformat(), "cities": sorted(cities)},
                ))
        return alerts


# ==================== Scoring ====================

def overall_risk_score(alerts: List[FraudAlert]) -> float:
    if not alerts:
        return 0
    weighted = sum(alert.risk_score * SEVERITY_MULTIPLIER[alert.severity] for alert in alerts)
    return round(min(100, weighted / (len(alerts) * 300) * 100), 2)


def recommendations(alerts: List[FraudAlert], score: float) -> List[str]:
    result = []
    if score >= 80:
        result.append("Block expense report submission and escalate for immediate investigation")
    elif score >= 60:
        result.append("Require manager approval before processing")
    elif score >= 40:
        result.append("Flag for manual review by finance team")

    if any(a.severity == "critical" for a in alerts):
        result.append("Investigate critical fraud indicators immediately")
    if any(a.alert_type == DUPLICATE_EXPENSE for a in alerts):
        result.append("Remove duplicate expenses before processing")
    if any(a.alert_type == FABRICATED_RECEIPT for a in alerts):
        result.append("Request additional documentation for flagged receipts")
    return result


def required_actions(alerts: List[FraudAlert], score: float) -> List[str]:
    actions: List[str] = []
    if score >= 90:
        actions += [BLOCK_USER, AUDIT_HISTORICAL]
    elif score >= 70:
        actions += [ESCALATE_TO_MANAGER, FLAG_FOR_INVESTIGATION]
    elif score >= 50:
        actions.append(REVIEW_MANUALLY)

    for alert in alerts:
        actions.append(alert.recommended_action)
    return list(dict.fromkeys(actions))


def summarize(alerts: List[FraudAlert]) -> Dict[str, Any]:
    by_type: Dict[str, int] = {}
    for alert in alerts:
        by_type[alert.alert_type] = by_type.get(alert.alert_type, 0) + 1

    return {
        "total_alerts": len(alerts),
        "critical_alerts": sum(1 for a in alerts if a.severity == "critical"),
        "high_risk_alerts": sum(1 for a in alerts if a.severity == "high"),
        "medium_risk_alerts": sum(1 for a in alerts if a.severity == "medium"),
        "low_risk_alerts": sum(1 for a in alerts if a.severity == "low"),
        "by_type": by_type,
    }
