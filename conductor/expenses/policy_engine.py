"""
Expense Policy Engine

Evaluates configurable policies against an expense context. A policy
describes a situation that needs attention: when its conditions match,
the expense violates it and the policy's actions are required.

Condition logic:
- conditions share a group through ``group_id`` (default "default")
- inside a group conditions are OR-ed
- groups are AND-ed

Scores:
- risk_score: weighted by violation level plus amount/weekend factors, capped at 100
- compliance_score: share of policies without error/critical violations
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
import json
import logging
import re

from conductor.expenses.report import ExpenseItem, ExpenseReport
from conductor.middleware.metrics import track_policy_evaluation

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals", "not_equals",
    "greater_than", "greater_than_or_equal",
    "less_than", "less_than_or_equal",
    "in", "not_in",
    "contains", "not_contains",
    "starts_with", "ends_with",
    "is_null", "is_not_null",
    "between", "not_between",
    "matches_regex",
)

VIOLATION_LEVELS = ("info", "warning", "error", "critical")
ACTION_TYPES = ("block", "require_approval", "flag", "notify", "auto_approve", "escalate")

LEVEL_RISK = {"critical": 25, "error": 15, "warning": 5, "info": 1}


@dataclass
class PolicyCondition:
    field: str
    operator: str
    value: Any = None
    group_id: str = "default"


@dataclass
class PolicyAction:
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "parameters": self.parameters, "message": self.message}


@dataclass
class PolicyRule:
    id: str
    name: str
    description: str = ""
    category: str = "limit"  # limit, compliance, fraud, approval, documentation
    priority: int = 0
    is_active: bool = True
    conditions: List[PolicyCondition] = field(default_factory=list)
    actions: List[PolicyAction] = field(default_factory=list)
    violation_level: str = "warning"


@dataclass
class PolicyViolation:
    rule_id: str
    rule_name: str
    field: str
    expected_value: Any
    actual_value: Any
    violation_level: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "field": self.field,
            "expected_value": self.expected_value,
            "actual_value": self.actual_value,
            "violation_level": self.violation_level,
            "message": self.message,
        }


@dataclass
class PolicyEvaluationResult:
    is_compliant: bool
    violations: List[PolicyViolation]
    required_actions: List[PolicyAction]
    risk_score: int
    compliance_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_compliant": self.is_compliant,
            "violations": [v.to_dict() for v in self.violations],
            "required_actions": [a.to_dict() for a in self.required_actions],
            "risk_score": self.risk_score,
            "compliance_score": self.compliance_score,
        }


def default_policies() -> List[PolicyRule]:
    return [
        PolicyRule(
            id="daily-limit-meals",
            name="Daily Meal Limit",
            description="Meal expenses cannot exceed R$120 per day",
            category="limit",
            priority=100,
            conditions=[
                PolicyCondition("category", "equals", "meals", group_id="category"),
                PolicyCondition("amount", "greater_than", 120, group_id="amount"),
            ],
            actions=[PolicyAction(
                "require_approval", {"approver": "manager"},
                "Meal expense exceeds daily limit and requires manager approval",
            )],
            violation_level="warning",
        ),
        PolicyRule(
            id="weekend-submission",
            name="Weekend Submission Check",
            description="Flag expenses submitted on weekends for review",
            category="fraud",
            priority=50,
            conditions=[PolicyCondition("is_weekend", "equals", True)],
            actions=[PolicyAction(
                "flag", {"reason": "weekend_submission"},
                "Expense submitted on weekend - requires additional review",
            )],
            violation_level="info",
        ),
    ]


# ==================== Context ====================

def build_expense_context(item: ExpenseItem, report: ExpenseReport = None, extra: Dict[str, Any] = None) -> Dict[str, Any]:
    """Flatten an item (and its report) into the dict policies are evaluated against."""
    context: Dict[str, Any] = {
        "id": item.id,
        "amount": item.amount,
        "category": item.category,
        "vendor": item.vendor,
        "description": item.description,
        "expense_date": item.expense_date,
        "receipt_url": item.receipt_url,
        "city": item.city,
        "has_business_purpose": item.has_business_purpose,
        "is_weekend": item.is_weekend,
        "day_of_week": item.expense_date.strftime("%A"),
        "total_amount": item.amount,
    }
    if report is not None:
        context.update({
            "report": {
                "id": report.id,
                "employee_id": report.employee_id,
                "department_id": report.department_id,
                "cost_center_id": report.cost_center_id,
                "project_id": report.project_id,
                "item_count": len(report.items),
            },
            "employee_id": report.employee_id,
            "total_amount": report.total_amount,
            "submission_date": report.submission_date,
        })
    if extra:
        context.update(extra)
    return context


def get_field_value(path: str, context: Dict[str, Any]) -> Any:
    value: Any = context
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return None
    return value


def _number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _norm(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def evaluate_condition(condition: PolicyCondition, context: Dict[str, Any]) -> bool:
    """
    Apply one operator.

    Raises:
        ValueError: Unknown operator or invalid regex
    """
    actual = get_field_value(condition.field, context)
    expected = condition.value
    op = condition.operator

    if op == "equals":
        return _norm(actual) == _norm(expected)
    if op == "not_equals":
        return _norm(actual) != _norm(expected)

    if op in ("greater_than", "greater_than_or_equal", "less_than", "less_than_or_equal"):
        left, right = _number(actual), _number(expected)
        if left is None or right is None:
            return False
        return {
            "greater_than": left > right,
            "greater_than_or_equal": left >= right,
            "less_than": left < right,
            "less_than_or_equal": left <= right,
        }[op]

    if op in ("in", "not_in"):
        if not isinstance(expected, (list, tuple, set)):
            return False
        found = _norm(actual) in [_norm(v) for v in expected]
        return found if op == "in" else not found

    if op in ("contains", "not_contains", "starts_with", "ends_with"):
        haystack = str(actual if actual is not None else "").lower()
        needle = str(expected).lower()
        if op == "contains":
            return needle in haystack
        if op == "not_contains":
            return needle not in haystack
        if op == "starts_with":
            return haystack.startswith(needle)
        return haystack.endswith(needle)

    if op == "is_null":
        return actual is None or actual == ""
    if op == "is_not_null":
        return actual is not None and actual != ""

    if op in ("between", "not_between"):
        if not isinstance(expected, (list, tuple)) or len(expected) != 2:
            return False
        value, low, high = _number(actual), _number(expected[0]), _number(expected[1])
        if value is None or low is None or high is None:
            return False
        inside = low <= value <= high
        return inside if op == "between" else not inside

    if op == "matches_regex":
        try:
            return re.search(str(expected), str(actual)) is not None
        except re.error as e:
            raise ValueError(f"Invalid regex pattern {expected!r}: {e}") from e

    raise ValueError(f"Unknown operator: {op}")


def group_conditions(conditions: List[PolicyCondition]) -> Dict[str, List[PolicyCondition]]:
    groups: Dict[str, List[PolicyCondition]] = {}
    for condition in conditions:
        groups.setdefault(condition.group_id or "default", []).append(condition)
    return groups


def violation_message(condition: PolicyCondition, actual: Any) -> str:
    return f"Field '{condition.field}' {condition.operator.replace('_', ' ')} {condition.value!r} (actual: {actual!r})"


def _json_safe(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class PolicyEngineService:
    def __init__(self, policies: List[PolicyRule] = None):
        self.policies = policies if policies is not None else default_policies()

    def evaluate_policy(self, policy: PolicyRule, context: Dict[str, Any]) -> Optional[PolicyViolation]:
        """Return the violation when every condition group matches, else None."""
        if not policy.conditions:
            return None

        first_match = None
        for conditions in group_conditions(policy.conditions).values():
            matched = next((c for c in conditions if evaluate_condition(c, context)), None)
            if matched is None:
                return None
            if first_match is None:
                first_match = matched

        actual = get_field_value(first_match.field, context)
        return PolicyViolation(
            rule_id=policy.id,
            rule_name=policy.name,
            field=first_match.field,
            expected_value=first_match.value,
            actual_value=_json_safe(actual),
            violation_level=policy.violation_level,
            message=policy.description or violation_message(first_match, actual),
        )

    def evaluate(self, context: Dict[str, Any], policies: List[PolicyRule] = None) -> PolicyEvaluationResult:
        policies = [p for p in (policies if policies is not None else self.policies) if p.is_active]
        policies.sort(key=lambda p: p.priority, reverse=True)

        violations: List[PolicyViolation] = []
        actions: List[PolicyAction] = []

        for policy in policies:
            try:
                violation = self.evaluate_policy(policy, context)
            except (ValueError, TypeError) as e:
                logger.error(f"Error evaluating policy {policy.name}: {e}")
                violations.append(PolicyViolation(
                    rule_id=policy.id,
                    rule_name=policy.name,
                    field="system",
                    expected_value="valid evaluation",
                    actual_value="evaluation error",
                    violation_level="error",
                    message=f"Policy evaluation failed: {e}",
                ))
                continue

            if violation:
                violations.append(violation)
                actions.extend(policy.actions)

        result = PolicyEvaluationResult(
            is_compliant=not any(v.violation_level in ("error", "critical") for v in violations),
            violations=violations,
            required_actions=deduplicate_actions(actions),
            risk_score=calculate_risk_score(violations, context),
            compliance_score=calculate_compliance_score(violations, len(policies)),
        )
        track_policy_evaluation(result.is_compliant)
        logger.info(
            f"Policy evaluation: compliant={result.is_compliant}, violations={len(violations)}, "
            f"risk={result.risk_score}, compliance={result.compliance_score}"
        )
        return result

    def evaluate_report(self, report: ExpenseReport, policies: List[PolicyRule] = None) -> PolicyEvaluationResult:
        """Evaluate every item of a report; violations and actions are merged."""
        policies = [p for p in (policies if policies is not None else self.policies) if p.is_active]
        violations: List[PolicyViolation] = []
        actions: List[PolicyAction] = []

        for item in report.items:
            item_result = self.evaluate(build_expense_context(item, report), policies)
            violations.extend(item_result.violations)
            actions.extend(item_result.required_actions)

        report_context = {"total_amount": report.total_amount, "submission_date": report.submission_date}
        is_compliant = not any(v.violation_level in ("error", "critical") for v in violations)
        return PolicyEvaluationResult(
            is_compliant=is_compliant,
            violations=violations,
            required_actions=deduplicate_actions(actions),
            risk_score=calculate_risk_score(violations, report_context),
            compliance_score=calculate_compliance_score(violations, len(policies)),
        )


def calculate_risk_score(violations: List[PolicyViolation], context: Dict[str, Any]) -> int:
    score = sum(LEVEL_RISK.get(v.violation_level, 0) for v in violations)

    total = _number(context.get("total_amount")) or 0
    if total > 10000:
        score += 10
    if total > 50000:
        score += 20

    submission = context.get("submission_date")
    if isinstance(submission, str):
        submission = date.fromisoformat(submission[:10])
    if submission is not None and submission.weekday() >= 5:
        score += 5

    return min(100, score)


def calculate_compliance_score(violations: List[PolicyViolation], total_policies: int) -> int:
    if total_policies == 0:
        return 100
    serious = sum(1 for v in violations if v.violation_level in ("error", "critical"))
    return round(max(0.0, (total_policies - serious) / total_policies) * 100)


def deduplicate_actions(actions: List[PolicyAction]) -> List[PolicyAction]:
    seen = set()
    unique = []
    for action in actions:
        key = f"{action.type}_{json.dumps(action.parameters, sort_keys=True, default=str)}"
        if key not in seen:
            seen.add(key)
            unique.append(action)
    return unique
