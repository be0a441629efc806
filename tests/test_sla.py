"""
Unit Tests for SLA Management

Tests:
- Definition and workflow validation
- Rule matching, severity and breach percentage
- Business-hours calendar
- Instance lifecycle: start, pause, resume, complete
- Breach sweep (escalation and violation)
- Definition deletion and compliance statistics
"""

import uuid
from datetime import time, timedelta

import pytest
from sqlalchemy import func, select

from conductor.core.exceptions import SlaDefinitionError, SlaInstanceNotFoundError, SlaInstanceStateError
from conductor.models.sla import SlaDefinition, SlaViolation
from conductor.sla.calendar import BusinessCalendar
from conductor.sla.rules import (
    breach_percentage,
    calculate_elapsed_minutes,
    is_rule_match,
    time_targets_to_minutes,
    validate_definition,
    validate_workflow,
    violation_severity,
)
from conductor.sla.service import SlaService
from tests.conftest import utc

T0 = utc(2026, 10, 13, 10, 0)  # Tuesday


def at(minutes):
    return T0 + timedelta(minutes=minutes)


def new_ticket(**fields):
    return {"id": str(uuid.uuid4()), "priority": "high", **fields}


class TestDefinitionValidation:
    """Test SLA definition payload validation"""

    def test_valid_time_targets(self):
        data = {"name": "Gold", "time_targets": [{"metric": "response_time", "target": 4, "unit": "hours"}]}

        assert validate_definition(data) == []

    def test_valid_minutes_fields(self):
        assert validate_definition({"name": "Gold", "response_time_minutes": 30}) == []

    def test_name_and_targets_required(self):
        errors = validate_definition({"name": "  "})

        assert "SLA name is required" in errors
        assert "At least one time target must be specified" in errors

    def test_invalid_type(self):
        errors = validate_definition({"name": "x", "type": "XYZ", "response_time_minutes": 30})

        assert errors == ["Invalid SLA type. Must be SLA, OLA, or UC"]

    def test_invalid_time_target(self):
        errors = validate_definition({
            "name": "x",
            "time_targets": [{"metric": "lunch_time", "target": 0, "unit": "weeks"}],
        })

        assert len(errors) == 3, f"Metric, target and unit should all be reported: {errors}"

    def test_negative_minutes(self):
        errors = validate_definition({"name": "x", "response_time_minutes": -5})

        assert errors == ["response_time_minutes must be a positive integer"]

    @pytest.mark.parametrize("threshold,valid", [(0, False), (1, True), (100, True), (101, False)])
    def test_escalation_threshold(self, threshold, valid):
        data = {"name": "x", "response_time_minutes": 30, "escalation_threshold_percent": threshold}

        assert (validate_definition(data) == []) is valid

    @pytest.mark.parametrize("calendar_fields,error", [
        ({"timezone": "Mars/Olympus"}, "Unknown timezone: 'Mars/Olympus'"),
        ({"working_hours": {"start": "8h", "end": "18:00"}}, "working_hours.start must be HH:MM"),
        ({"working_hours": {"start": "08:00", "end": "24:30"}}, "working_hours.end must be HH:MM"),
        ({"working_hours": {"start": "18:00", "end": "08:00"}}, "working_hours.start must be before working_hours.end"),
        ({"working_hours": "08-18"}, "working_hours must be an object with 'start' and 'end'"),
        ({"working_days": [1, 2, 8]}, "working_days must contain weekday numbers from 1 (Monday) to 7 (Sunday)"),
        ({"working_days": [0]}, "working_days must contain weekday numbers from 1 (Monday) to 7 (Sunday)"),
        ({"working_days": []}, "working_days must be a non-empty list of weekday numbers"),
    ])
    def test_invalid_calendar(self, calendar_fields, error):
        errors = validate_definition({"name": "x", "response_time_minutes": 30, **calendar_fields})

        assert errors == [error]

    def test_valid_calendar(self):
        data = {
            "name": "x",
            "response_time_minutes": 30,
            "timezone": "America/Manaus",
            "working_hours": {"start": "07:30", "end": "19:00"},
            "working_days": [1, 2, 3, 4, 5, 6],
        }

        assert validate_definition(data) == []

    @pytest.mark.parametrize("fields,error", [
        ({"escalation_threshold_percent": "high"}, "escalation_threshold_percent must be a number between 1 and 100"),
        ({"escalation_threshold_percent": True}, "escalation_threshold_percent must be a number between 1 and 100"),
        ({"time_targets": [5]}, "Time target 1: must be an object with metric, target and unit"),
        ({"time_targets": "4h"}, "time_targets must be a list"),
        ({"application_rules": ["priority=high"]}, "application_rules must be a list of objects"),
    ])
    def test_wrong_field_types_are_errors(self, fields, error):
        errors = validate_definition({"name": "x", "response_time_minutes": 30, **fields})

        assert errors == [error]


    def test_time_targets_to_minutes(self):
        columns = time_targets_to_minutes([
            {"metric": "response_time", "target": 1.5, "unit": "hours"},
            {"metric": "resolution_time", "target": 2, "unit": "days"},
            {"metric": "update_time", "target": 0.5},
        ])

        assert columns == {
            "response_time_minutes": 90,
            "resolution_time_minutes": 2880,
            "update_time_minutes": 1,
        }


class TestWorkflowValidation:
    """Test SLA automation workflow validation"""

    def test_valid_workflow(self):
        workflow = {
            "name": "Escalate breaches",
            "triggers": [{"type": "sla_breach"}],
            "actions": [
                {"type": "send_email", "config": {"to": "ops@acme.com.br", "subject": "SLA breach"}},
                {"type": "notify", "config": {"groups": ["n2"]}},
            ],
            "priority": 5,
        }

        assert validate_workflow(workflow) == []

    def test_invalid_workflow(self):
        errors = validate_workflow({
            "name": "",
            "triggers": [],
            "actions": [{"type": "webhook", "config": {}}],
            "priority": 11,
        })

        assert errors == [
            "Workflow name is required",
            "At least one trigger must be specified",
            "Action at index 0: webhook requires 'url' in config",
            "Priority must be a number between 1 and 10",
        ]

    def test_unknown_trigger_and_action(self):
        errors = validate_workflow({
            "name": "x",
            "triggers": [{"type": "full_moon"}],
            "actions": [{"type": "teleport"}],
        })

        assert errors[0].startswith("Invalid trigger type at index 0")
        assert errors[1].startswith("Invalid action type at index 0")

    @pytest.mark.parametrize("action", [
        {"type": "send_email", "config": {"to": "ops@acme.com.br"}},
        {"type": "notify", "config": {}},
        {"type": "create_ticket", "config": {}},
        {"type": "assign_user", "config": {"user": "x"}},
    ])
    def test_incomplete_action_config(self, action):
        errors = validate_workflow({"name": "x", "triggers": [{"type": "sla_warning"}], "actions": [action]})

        assert len(errors) == 1

    def test_wrong_element_types_are_errors(self):
        errors = validate_workflow({
            "name": "x",
            "triggers": ["sla_breach"],
            "actions": [7, {"type": "webhook", "config": "https://hooks.acme.com.br"}],
            "priority": "high",
        })

        assert errors == [
            "Trigger at index 0 must be an object",
            "Action at index 0 must be an object",
            "Action at index 1: config must be an object",
            "Priority must be a number between 1 and 10",
        ]


class TestRules:
    """Test pure SLA rule helpers"""

    def test_no_rules_match_everything(self):
        assert is_rule_match(None, {"priority": "low"})
        assert is_rule_match([], {"priority": "low"})

    @pytest.mark.parametrize("rule,matches", [
        ({"field": "priority", "operator": "equals", "value": "high"}, True),
        ({"field": "priority", "operator": "not_equals", "value": "high"}, False),
        ({"field": "priority", "operator": "in", "value": ["high", "critical"]}, True),
        ({"field": "priority", "operator": "not_in", "value": ["high"]}, False),
        ({"field": "priority", "operator": "in", "value": "high"}, False),
        ({"field": "priority", "operator": "resembles", "value": "x"}, True),
    ])
    def test_rule_operators(self, rule, matches):
        assert is_rule_match([rule], {"priority": "high"}) is matches

    def test_all_rules_must_hold(self):
        rules = [
            {"field": "priority", "operator": "equals", "value": "high"},
            {"field": "channel", "operator": "equals", "value": "email"},
        ]

        assert not is_rule_match(rules, {"priority": "high", "channel": "phone"})

    @pytest.mark.parametrize("percentage,severity", [
        (0, "low"),
        (25, "low"),
        (26, "medium"),
        (50, "medium"),
        (50.01, "high"),
        (100, "high"),
        (101, "critical"),
    ])
    def test_violation_severity(self, percentage, severity):
        assert violation_severity(percentage) == severity

    def test_breach_percentage(self):
        assert breach_percentage(90, 60) == 50.0
        assert breach_percentage(90, 0) == 0.0

    def test_elapsed_minutes(self):
        naive_start = T0.replace(tzinfo=None)

        assert calculate_elapsed_minutes(naive_start, at(90)) == 90, "Naive datetimes are UTC"
        assert calculate_elapsed_minutes(at(90), T0) == 0


class TestBusinessCalendar:
    """Test working-time arithmetic"""

    def test_over_weekend(self):
        calendar = BusinessCalendar(tz="UTC")

        # Friday 17:00 -> Monday 09:00: one hour each side of the weekend
        minutes = calendar.working_minutes_between(utc(2026, 10, 16, 17, 0), utc(2026, 10, 19, 9, 0))

        assert minutes == 120

    def test_weekend_only(self):
        calendar = BusinessCalendar(tz="UTC")

        assert calendar.working_minutes_between(utc(2026, 10, 17, 9, 0), utc(2026, 10, 18, 17, 0)) == 0

    def test_local_timezone(self):
        calendar = BusinessCalendar(tz="America/Sao_Paulo")

        # 07:00 -> 09:00 local; the clock starts at 08:00
        assert calendar.working_minutes_between(utc(2026, 10, 13, 10, 0), utc(2026, 10, 13, 12, 0)) == 60

    def test_custom_days(self):
        calendar = BusinessCalendar(working_days=(6, 7), tz="UTC")

        assert calendar.working_minutes_between(utc(2026, 10, 17, 0, 0), utc(2026, 10, 18, 0, 0)) == 600

    def test_from_definition(self):
        definition = SlaDefinition(
            name="x",
            working_days=[1, 2, 3],
            working_hours={"start": "09:00", "end": "17:00"},
            timezone="UTC",
        )

        calendar = BusinessCalendar.from_definition(definition)

        assert calendar.working_days == {1, 2, 3}
        assert calendar.start == time(9, 0)
        assert calendar.end == time(17, 0)

    def test_elapsed_uses_calendar(self):
        calendar = BusinessCalendar(tz="UTC")

        assert calculate_elapsed_minutes(utc(2026, 10, 13, 17, 0), utc(2026, 10, 14, 9, 0), calendar) == 120


class TestSlaService:
    """Test SLA definitions and instance lifecycle on SQLite"""

    @pytest.fixture
    def service(self, db_session, tenant):
        return SlaService(db_session, tenant_id=tenant.id)

    @staticmethod
    async def _definition(service, **overrides):
        data = {
            "name": "Suporte 24x7",
            "business_hours_only": False,
            "time_targets": [{"metric": "response_time", "target": 60, "unit": "minutes"}],
        }
        data.update(overrides)
        return await service.create_definition(data)

    async def test_create_definition(self, service, tenant):
        definition = await self._definition(service, time_targets=[
            {"metric": "response_time", "target": 1, "unit": "hours"},
            {"metric": "resolution_time", "target": 4, "unit": "hours"},
        ])

        assert definition.tenant_id == tenant.id
        assert definition.metric_targets() == [("response_time", 60), ("resolution_time", 240)]
        assert definition.business_hours_only is False
        assert definition.escalation_threshold_percent == 80

    async def test_create_invalid_definition(self, service):
        with pytest.raises(SlaDefinitionError) as exc_info:
            await service.create_definition({"name": ""})

        assert not exc_info.value.conflict
        assert "SLA name is required" in exc_info.value.details["errors"]

    async def test_list_definitions(self, service):
        await self._definition(service, name="Bronze", priority=1)
        await self._definition(service, name="Ouro", priority=9)
        inactive = await self._definition(service, name="Antigo", priority=5, is_active=False)

        names = [d.name for d in await service.list_definitions()]
        active = await service.list_definitions(active_only=True)

        assert names == ["Ouro", "Antigo", "Bronze"], "Highest priority first"
        assert inactive not in active

    async def test_start_for_ticket(self, service):
        await self._definition(service, time_targets=[
            {"metric": "response_time", "target": 60},
            {"metric": "resolution_time", "target": 240},
        ])
        ticket = new_ticket()

        instances = await service.start_for_ticket(ticket, now=T0)
        again = await service.start_for_ticket(ticket, now=at(5))

        assert {i.current_metric for i in instances} == {"response_time", "resolution_time"}
        assert all(i.status == "running" and i.remaining_minutes == i.target_minutes for i in instances)
        assert again == [], "Metrics with a clock are not restarted"

    async def test_application_rules(self, service):
        await self._definition(service, application_rules=[
            {"field": "priority", "operator": "in", "value": ["critical"]},
        ])

        assert await service.start_for_ticket(new_ticket(priority="low"), now=T0) == []
        assert len(await service.start_for_ticket(new_ticket(priority="critical"), now=T0)) == 1

    async def test_pause_resume_complete(self, service):
        await self._definition(service)
        [instance] = await service.start_for_ticket(new_ticket(), now=T0)

        paused = await service.pause(instance.id, reason="Aguardando cliente", now=at(20))
        assert paused.status == "paused"
        assert paused.elapsed_minutes == 20
        assert paused.remaining_minutes == 40

        resumed = await service.resume(instance.id, now=at(50))
        assert resumed.status == "running"
        assert resumed.paused_minutes == 30
        assert resumed.paused_at is None

        completed = await service.complete(instance.id, now=at(70))
        assert completed.status == "completed"
        assert completed.elapsed_minutes == 70
        assert completed.remaining_minutes == 20, "Paused time does not count against the target"
        assert not completed.is_breached

        events = await service.get_events(instance.id)
        assert [e.event_type for e in events] == ["started", "paused", "resumed", "completed"]
        assert events[1].event_reason == "Aguardando cliente"
        assert events[2].event_data == {"paused_duration_minutes": 30}

    async def test_complete_while_paused(self, service):
        await self._definition(service)
        [instance] = await service.start_for_ticket(new_ticket(), now=T0)

        await service.pause(instance.id, now=at(10))
        completed = await service.complete(instance.id, now=at(40))

        assert completed.paused_minutes == 30
        assert completed.elapsed_minutes - completed.paused_minutes == 10

    async def test_breached_on_completion(self, service, db_session):
        await self._definition(service)
        [instance] = await service.start_for_ticket(new_ticket(), now=T0)

        completed = await service.complete(instance.id, now=at(90))

        assert completed.is_breached
        assert completed.breach_duration_minutes == 30
        assert completed.breach_percentage == 50.0

        violation = (await db_session.execute(select(SlaViolation))).scalar_one()
        assert violation.violation_type == "response_time"
        assert violation.actual_minutes == 90
        assert violation.severity == "medium"

    async def test_check_breaches(self, service, db_session):
        await self._definition(service)
        [first] = await service.start_for_ticket(new_ticket(), now=T0)
        [second] = await service.start_for_ticket(new_ticket(), now=at(30))

        counts = await service.check_breaches(now=at(50))
        assert counts == {"checked": 2, "violated": 0, "escalated": 1, "updated": 1}
        assert first.escalation_level == 1, "83% of the target used passes the 80% threshold"
        assert second.escalation_level == 0

        counts = await service.check_breaches(now=at(70))
        assert counts == {"checked": 2, "violated": 1, "escalated": 0, "updated": 1}
        assert first.status == "violated"
        assert first.violated_at == at(70)
        assert first.breach_duration_minutes == 10

        counts = await service.check_breaches(now=at(75))
        assert counts["checked"] == 1, "Violated instances leave the sweep"

        violations = await db_session.scalar(select(func.count(SlaViolation.id)))
        assert violations == 1

    async def test_invalid_transitions(self, service):
        await self._definition(service)
        [instance] = await service.start_for_ticket(new_ticket(), now=T0)

        with pytest.raises(SlaInstanceStateError):
            await service.resume(instance.id, now=at(5))

        await service.complete(instance.id, now=at(10))
        with pytest.raises(SlaInstanceStateError):
            await service.pause(instance.id, now=at(15))
        with pytest.raises(SlaInstanceStateError):
            await service.complete(instance.id, now=at(15))

    async def test_unknown_instance(self, service):
        with pytest.raises(SlaInstanceNotFoundError):
            await service.pause(uuid.uuid4())

    async def test_delete_unused_definition(self, service):
        definition = await self._definition(service)

        assert await service.delete_definition(definition.id) == "deleted"
        with pytest.raises(SlaInstanceNotFoundError):
            await service.get_definition(definition.id)

    async def test_delete_definition_in_use(self, service):
        definition = await self._definition(service)
        await service.start_for_ticket(new_ticket(), now=T0)

        with pytest.raises(SlaDefinitionError) as exc_info:
            await service.delete_definition(definition.id)

        assert exc_info.value.conflict
        assert exc_info.value.details["active_instances"] == 1

    async def test_delete_definition_with_history(self, service):
        definition = await self._definition(service)
        [instance] = await service.start_for_ticket(new_ticket(), now=T0)
        await service.complete(instance.id, now=at(30))

        assert await service.delete_definition(definition.id) == "deactivated"
        assert definition.is_active is False

    async def test_compliance_stats(self, service):
        definition = await self._definition(service)
        [met] = await service.start_for_ticket(new_ticket(), now=T0)
        [late] = await service.start_for_ticket(new_ticket(), now=T0)
        await service.start_for_ticket(new_ticket(), now=T0)

        await service.complete(met.id, now=at(30))
        await service.complete(late.id, now=at(90))

        stats = await service.compliance_stats(definition.id)

        assert stats["total_instances"] == 3
        assert stats["active_instances"] == 1
        assert stats["closed_instances"] == 2
        assert stats["met"] == 1
        assert stats["breached"] == 1
        assert stats["compliance_rate"] == 50.0
        assert stats["average_effective_minutes"] == 60.0

    async def test_compliance_without_history(self, service):
        stats = await service.compliance_stats()

        assert stats["compliance_rate"] == 100.0
        assert stats["total_instances"] == 0
