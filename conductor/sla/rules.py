"""
SLA rule helpers: definition/workflow validation, ticket matching,
elapsed-time computation and violation severity.

All functions are pure; SlaService builds on them.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import math
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from conductor.models.sla import SLA_METRICS, SLA_TYPES
from conductor.sla.calendar import BusinessCalendar, parse_time

TIME_UNITS = {"minutes": 1, "hours": 60, "days": 1440}

DEFAULT_HOURS = {"start": "08:00", "end": "18:00"}

WORKFLOW_TRIGGER_TYPES = (
    "sla_breach",
    "sla_warning",
    "sla_met",
    "instance_created",
    "instance_closed",
    "escalation_triggered",
    "threshold_reached",
)

WORKFLOW_ACTION_TYPES = (
    "send_email",
    "send_notification",
    "notify",
    "create_ticket",
    "escalate",
    "update_priority",
    "assign_user",
    "webhook",
    "log_event",
)


def _is_number(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, (int, float))


def validate_calendar(data: Dict[str, Any]) -> List[str]:
    """Check timezone, working_hours and working_days of a definition payload."""
    errors = []

    tz = data.get("timezone")
    if tz is not None:
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError, TypeError):
            errors.append(f"Unknown timezone: {tz!r}")

    hours = data.get("working_hours")
    if hours is not None:
        if not isinstance(hours, dict):
            errors.append("working_hours must be an object with 'start' and 'end'")
        else:
            parsed = {}
            for key in ("start", "end"):
                try:
                    parsed[key] = parse_time(hours.get(key, DEFAULT_HOURS[key]))
                except ValueError:
                    errors.append(f"working_hours.{key} must be HH:MM")
            if len(parsed) == 2 and parsed["start"] >= parsed["end"]:
                errors.append("working_hours.start must be before working_hours.end")

    days = data.get("working_days")
    if days is not None:
        if not isinstance(days, list) or not days:
            errors.append("working_days must be a non-empty list of weekday numbers")
        elif any(isinstance(day, bool) or not isinstance(day, int) or not 1 <= day <= 7 for day in days):
            errors.append("working_days must contain weekday numbers from 1 (Monday) to 7 (Sunday)")

    return errors


def validate_definition(data: Dict[str, Any]) -> List[str]:
    """
    Validate an SLA definition payload.

    Time targets come either as ``time_targets``
    ([{"metric": "response_time", "target": 4, "unit": "hours"}]) or as the
    ``*_minutes`` fields.

    Returns:
        List of error messages (empty when valid)
    """
    errors = []

    if not str(data.get("name") or "").strip():
        errors.append("SLA name is required")

    if data.get("type", "SLA") not in SLA_TYPES:
        errors.append("Invalid SLA type. Must be SLA, OLA, or UC")

    time_targets = data.get("time_targets") or []
    if not isinstance(time_targets, list):
        errors.append("time_targets must be a list")
        time_targets = []
    legacy_targets = [data.get(column) for column in SLA_METRICS.values() if data.get(column)]

    if not time_targets and not legacy_targets:
        errors.append("At least one time target must be specified")

    for index, target in enumerate(time_targets, start=1):
        if not isinstance(target, dict):
            errors.append(f"Time target {index}: must be an object with metric, target and unit")
            continue
        metric = target.get("metric")
        if metric not in SLA_METRICS:
            errors.append(f"Time target {index}: metric must be one of {', '.join(SLA_METRICS)}")
        value = target.get("target")
        if not _is_number(value) or value <= 0:
            errors.append(f"Time target {index}: target must be a positive number")
        if target.get("unit", "minutes") not in TIME_UNITS:
            errors.append(f"Time target {index}: unit must be 'minutes', 'hours', or 'days'")

    for column in SLA_METRICS.values():
        value = data.get(column)
        if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
            errors.append(f"{column} must be a positive integer")

    rules = data.get("application_rules")
    if rules is not None and (not isinstance(rules, list) or not all(isinstance(rule, dict) for rule in rules)):
        errors.append("application_rules must be a list of objects")

    escalation = data.get("escalation_threshold_percent")
    if escalation is not None and (not _is_number(escalation) or not 1 <= escalation <= 100):
        errors.append("escalation_threshold_percent must be a number between 1 and 100")

    errors.extend(validate_calendar(data))
    return errors


def time_targets_to_minutes(time_targets: List[Dict[str, Any]]) -> Dict[str, int]:
    """Map time_targets entries to SlaDefinition ``*_minutes`` columns."""
    columns = {}
    for target in time_targets or []:
        minutes = int(math.ceil(target["target"] * TIME_UNITS[target.get("unit", "minutes")]))
        columns[SLA_METRICS[target["metric"]]] = minutes
    return columns


def is_rule_match(rules: Optional[List[Dict[str, Any]]], ticket: Dict[str, Any]) -> bool:
    """All rules must hold; unknown operators pass."""
    for rule in rules or []:
        value = ticket.get(rule.get("field"))
        expected = rule.get("value")
        operator = rule.get("operator")

        if operator == "equals" and value != expected:
            return False
        if operator == "not_equals" and value == expected:
            return False
        if operator == "in" and not (isinstance(expected, list) and value in expected):
            return False
        if operator == "not_in" and not (isinstance(expected, list) and value not in expected):
            return False
    return True


def violation_severity(percentage: float) -> str:
    if percentage > 100:
        return "critical"
    if percentage > 50:
        return "high"
    if percentage > 25:
        return "medium"
    return "low"


def breach_percentage(effective_minutes: int, target_minutes: int) -> float:
    if not target_minutes:
        return 0.0
    return round((effective_minutes / target_minutes - 1) * 100, 2)


def calculate_elapsed_minutes(
    start: datetime,
    end: datetime,
    calendar: Optional[BusinessCalendar] = None,
) -> int:
    """Whole minutes between start and end; only working minutes with a calendar."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)

    if calendar is not None:
        return calendar.working_minutes_between(start, end)
    return max(0, int((end - start).total_seconds() // 60))


def validate_workflow(workflow: Dict[str, Any]) -> List[str]:
    """Validate an SLA automation workflow (triggers + actions). Returns error messages."""
    errors = []

    if not str(workflow.get("name") or "").strip():
        errors.append("Workflow name is required")

    triggers = workflow.get("triggers")
    if not isinstance(triggers, list) or not triggers:
        errors.append("At least one trigger must be specified")
        triggers = []
    for index, trigger in enumerate(triggers):
        if not isinstance(trigger, dict):
            errors.append(f"Trigger at index {index} must be an object")
        elif trigger.get("type") not in WORKFLOW_TRIGGER_TYPES:
            errors.append(
                f"Invalid trigger type at index {index}. Valid types: {', '.join(WORKFLOW_TRIGGER_TYPES)}"
            )

    actions = workflow.get("actions")
    if not isinstance(actions, list) or not actions:
        errors.append("At least one action must be specified")
        actions = []
    for index, action in enumerate(actions):
        errors.extend(_validate_action(index, action))

    priority = workflow.get("priority")
    if priority is not None and (not _is_number(priority) or not 1 <= priority <= 10):
        errors.append("Priority must be a number between 1 and 10")

    return errors


def _validate_action(index: int, action: Dict[str, Any]) -> List[str]:
    if not isinstance(action, dict):
        return [f"Action at index {index} must be an object"]
    action_type = action.get("type")
    if action_type not in WORKFLOW_ACTION_TYPES:
        return [f"Invalid action type at index {index}. Valid types: {', '.join(WORKFLOW_ACTION_TYPES)}"]

    config = action.get("config") or {}
    if not isinstance(config, dict):
        return [f"Action at index {index}: config must be an object"]
    if action_type == "send_email":
        if not config.get("to") or not config.get("subject"):
            return [f"Action at index {index}: send_email requires 'to' and 'subject' in config"]
        if not isinstance(config["to"], str) or not isinstance(config["subject"], str):
            return [f"Action at index {index}: send_email 'to' and 'subject' must be strings"]
    elif action_type in ("send_notification", "notify"):
        if not (config.get("users") or config.get("groups") or config.get("recipients")):
            return [f"Action at index {index}: {action_type} requires 'users', 'groups', or 'recipients' in config"]
    elif action_type == "create_ticket":
        if not config.get("subject"):
            return [f"Action at index {index}: create_ticket requires 'subject' in config"]
    elif action_type == "webhook":
        if not config.get("url"):
            return [f"Action at index {index}: webhook requires 'url' in config"]
    elif action_type == "assign_user":
        if not config.get("userId"):
            return [f"Action at index {index}: assign_user requires 'userId' in config"]
    return []
