from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from helpdesk_sla.config import Priority, SLAState, SLAType
from helpdesk_sla.core import (
    PolicyConflictException,
    PolicyNotFoundException,
    ResourceNotFoundException,
    SLARecordConflictException,
    ValidationException,
)
from helpdesk_sla.sla.application import (
    PolicyCatalog,
    PolicyCreateDTO,
    PolicyService,
    PolicyUpdateDTO,
    SLAAssigner,
    SLAEvaluationService,
    SLALifecycleService,
)
from helpdesk_sla.sla.domain import SLAConfig, SLARecord, TicketSnapshot

from fakes import (
    FakePolicyRepository,
    FakeSLARecordRepository,
    FlakySLARecordRepository,
    RacingSLARecordRepository,
    RecordingEscalationHook,
    make_policy,
)

FRIDAY_AFTERNOON = datetime(2024, 1, 19, 16, 30, tzinfo=timezone.utc)
MONDAY = datetime(2024, 1, 22, tzinfo=timezone.utc)


def _ticket(ticket_id: str = "TCK-1", priority: str = "high") -> TicketSnapshot:
    return TicketSnapshot(id=ticket_id, priority=priority, created_at=FRIDAY_AFTERNOON)


@pytest.fixture
def policies() -> FakePolicyRepository:
    return FakePolicyRepository([
        make_policy("policy-high", "high", 60, 480, business_hours_only=True),
        make_policy("policy-critical", "critical", 30, 240, business_hours_only=False),
    ])


@pytest.fixture
def records() -> FakeSLARecordRepository:
    return FakeSLARecordRepository()


@pytest.fixture
def assigner(policies, records, config_provider) -> SLAAssigner:
    return SLAAssigner(PolicyCatalog(policies), records, config_provider)


# ========== PolicyCatalog ==========

@pytest.mark.asyncio
async def test_catalog_returns_the_active_policy(policies) -> None:
    policy = await PolicyCatalog(policies).find_active_policy(Priority.HIGH)
    assert policy.id == "policy-high"


@pytest.mark.asyncio
async def test_catalog_raises_when_priority_has_no_policy(policies) -> None:
    with pytest.raises(PolicyNotFoundException):
        await PolicyCatalog(policies).find_active_policy("low")


@pytest.mark.asyncio
async def test_catalog_picks_newest_of_duplicate_active_policies() -> None:
    repo = FakePolicyRepository([
        make_policy("old", "medium", created_at=FRIDAY_AFTERNOON),
        make_policy("new", "medium", created_at=FRIDAY_AFTERNOON + timedelta(days=1)),
        make_policy("inactive", "medium", created_at=MONDAY, is_active=False),
    ])
    policy = await PolicyCatalog(repo).find_active_policy("medium")
    assert policy.id == "new"


@pytest.mark.asyncio
async def test_catalog_breaks_ties_by_id() -> None:
    repo = FakePolicyRepository([
        make_policy("a", "medium", created_at=FRIDAY_AFTERNOON),
        make_policy("b", "medium", created_at=FRIDAY_AFTERNOON),
    ])
    policy = await PolicyCatalog(repo).find_active_policy("medium")
    assert policy.id == "b"


# ========== SLAAssigner ==========

@pytest.mark.asyncio
async def test_assign_computes_business_hour_deadlines(assigner, records) -> None:
    record = await assigner.assign(_ticket(), now=FRIDAY_AFTERNOON)

    assert record.policy_id == "policy-high"
    assert record.response_deadline == datetime(2024, 1, 22, 9, 30, tzinfo=timezone.utc)
    assert record.resolution_deadline == datetime(2024, 1, 22, 16, 30, tzinfo=timezone.utc)
    assert record.status == SLAState.ON_TRACK
    assert record.version == 1
    assert list(records.records) == ["TCK-1"]


@pytest.mark.asyncio
async def test_assign_wall_clock_policy(assigner) -> None:
    record = await assigner.assign(_ticket(priority="critical"))
    assert record.response_deadline == FRIDAY_AFTERNOON + timedelta(minutes=30)
    assert record.resolution_deadline == FRIDAY_AFTERNOON + timedelta(minutes=240)


@pytest.mark.asyncio
async def test_assign_is_idempotent(assigner, records) -> None:
    first = await assigner.assign(_ticket())
    second = await assigner.assign(_ticket())
    assert second.id == first.id
    assert len(records.records) == 1


@pytest.mark.asyncio
async def test_assign_returns_the_winner_of_a_race(policies, config_provider) -> None:
    competitor = SLARecord(
        ticket_id="TCK-1",
        policy_id="policy-high",
        response_deadline=MONDAY,
        resolution_deadline=MONDAY,
        id="winner",
    )
    racing = RacingSLARecordRepository(competitor)
    assigner = SLAAssigner(PolicyCatalog(policies), racing, config_provider)

    record = await assigner.assign(_ticket())

    assert record.id == "winner"
    assert len(racing.records) == 1


@pytest.mark.asyncio
async def test_assign_without_policy_creates_nothing(assigner, records) -> None:
    with pytest.raises(PolicyNotFoundException):
        await assigner.assign(_ticket(priority="low"))
    assert records.records == {}


# ========== SLALifecycleService ==========

def _lifecycle(records, policies, hook, config_provider, max_retries: int = 3):
    evaluation = SLAEvaluationService(records, policies, hook, config_provider, max_retries=max_retries)
    return SLALifecycleService(records, evaluation), evaluation


@pytest.mark.asyncio
async def test_late_first_response_breaches_and_escalates(
    assigner, records, policies, config_provider
) -> None:
    hook = RecordingEscalationHook()
    lifecycle, _ = _lifecycle(records, policies, hook, config_provider)
    await assigner.assign(_ticket())

    record = await lifecycle.record_first_response("TCK-1", MONDAY + timedelta(hours=10))

    assert record.response_breached
    assert record.status == SLAState.BREACHED
    assert record.escalated
    assert record.escalated_at == MONDAY + timedelta(hours=10)
    assert record.version == 2
    assert [(e.deadline_type, e.new_status) for e in hook.events] == [
        (SLAType.RESPONSE, SLAState.BREACHED)
    ]


@pytest.mark.asyncio
async def test_escalation_flag_respects_policy_setting(records, config_provider) -> None:
    policies = FakePolicyRepository([
        make_policy("quiet", "high", 60, 480, escalation_enabled=False),
    ])
    assigner = SLAAssigner(PolicyCatalog(policies), records, config_provider)
    hook = RecordingEscalationHook()
    lifecycle, _ = _lifecycle(records, policies, hook, config_provider)
    await assigner.assign(_ticket())

    record = await lifecycle.record_resolution("TCK-1", MONDAY + timedelta(hours=20))

    assert record.is_breached
    assert not record.escalated
    assert len(hook.events) == 2


@pytest.mark.asyncio
async def test_escalations_carry_the_policy_target(records, config_provider) -> None:
    policies = FakePolicyRepository([
        make_policy("paged", "high", 60, 480, escalation_target="#support-high"),
    ])
    assigner = SLAAssigner(PolicyCatalog(policies), records, config_provider)
    hook = RecordingEscalationHook()
    lifecycle, _ = _lifecycle(records, policies, hook, config_provider)
    await assigner.assign(_ticket())

    await lifecycle.record_first_response("TCK-1", MONDAY + timedelta(hours=10))

    assert [e.escalation_target for e in hook.events] == ["#support-high"]


@pytest.mark.asyncio
async def test_resolution_freezes_and_repeats_are_noops(
    assigner, records, policies, config_provider
) -> None:
    hook = RecordingEscalationHook()
    lifecycle, _ = _lifecycle(records, policies, hook, config_provider)
    await assigner.assign(_ticket())

    await lifecycle.record_first_response("TCK-1", MONDAY + timedelta(hours=9, minutes=10))
    resolved = await lifecycle.record_resolution("TCK-1", MONDAY + timedelta(hours=12))
    assert resolved.status == SLAState.ON_TRACK
    assert resolved.resolved_at == MONDAY + timedelta(hours=12)

    calls = records.update_calls
    again = await lifecycle.record_resolution("TCK-1", MONDAY + timedelta(hours=20))
    assert again.resolved_at == MONDAY + timedelta(hours=12)
    assert records.update_calls == calls


@pytest.mark.asyncio
async def test_lifecycle_on_unknown_ticket(records, policies, config_provider) -> None:
    lifecycle, _ = _lifecycle(records, policies, RecordingEscalationHook(), config_provider)
    with pytest.raises(ResourceNotFoundException):
        await lifecycle.record_first_response("missing", MONDAY)


# ========== SLAEvaluationService ==========

@pytest.mark.asyncio
async def test_refresh_retries_after_a_version_conflict(policies, config_provider) -> None:
    flaky = FlakySLARecordRepository()
    assigner = SLAAssigner(PolicyCatalog(policies), flaky, config_provider)
    await assigner.assign(_ticket())
    hook = RecordingEscalationHook()
    evaluation = SLAEvaluationService(flaky, policies, hook, config_provider)

    stored = await flaky.get("TCK-1")
    refreshed, changed = await evaluation.refresh(stored, MONDAY + timedelta(hours=10))

    assert changed
    assert refreshed.response_breached
    assert flaky.update_calls == 2
    assert len(hook.events) == 1


@pytest.mark.asyncio
async def test_refresh_gives_up_after_max_retries(policies, config_provider) -> None:
    class AlwaysStale(FakeSLARecordRepository):
        async def update(self, record):
            self.update_calls += 1
            raise SLARecordConflictException(record.ticket_id, reason="stale version")

    stale = AlwaysStale()
    await SLAAssigner(PolicyCatalog(policies), stale, config_provider).assign(_ticket())
    evaluation = SLAEvaluationService(
        stale, policies, RecordingEscalationHook(), config_provider, max_retries=2
    )

    with pytest.raises(SLARecordConflictException):
        await evaluation.refresh(await stale.get("TCK-1"), MONDAY + timedelta(hours=10))
    assert stale.update_calls == 2


@pytest.mark.asyncio
async def test_refresh_without_change_does_not_write(assigner, records, policies, config_provider) -> None:
    await assigner.assign(_ticket())
    evaluation = SLAEvaluationService(records, policies, RecordingEscalationHook(), config_provider)

    _, changed = await evaluation.refresh(await records.get("TCK-1"), FRIDAY_AFTERNOON)

    assert not changed
    assert records.update_calls == 0


@pytest.mark.asyncio
async def test_missing_policy_falls_back_to_default_lead(records, config_provider) -> None:
    record = await records.insert(SLARecord(
        ticket_id="TCK-9",
        policy_id="deleted",
        response_deadline=MONDAY + timedelta(hours=1),
        resolution_deadline=MONDAY + timedelta(hours=8),
    ))
    evaluation = SLAEvaluationService(
        records, FakePolicyRepository(), RecordingEscalationHook(), config_provider
    )

    # Default lead is 30 minutes.
    refreshed, changed = await evaluation.refresh(record, MONDAY + timedelta(minutes=40))

    assert changed
    assert refreshed.status == SLAState.AT_RISK
    assert not refreshed.escalated


# ========== PolicyService ==========

def _create_dto(**overrides) -> PolicyCreateDTO:
    fields = dict(
        name="High v2",
        priority="high",
        response_time_minutes=30,
        resolution_time_minutes=240,
    )
    fields.update(overrides)
    return PolicyCreateDTO(**fields)


@pytest.mark.asyncio
async def test_second_active_policy_for_a_priority_is_rejected(policies) -> None:
    service = PolicyService(policies)
    with pytest.raises(PolicyConflictException) as exc_info:
        await service.create_policy(_create_dto(), MONDAY)
    assert exc_info.value.existing_policy_id == "policy-high"


@pytest.mark.asyncio
async def test_inactive_policy_can_coexist(policies) -> None:
    service = PolicyService(policies)
    created = await service.create_policy(_create_dto(is_active=False), MONDAY)
    assert not created.is_active
    assert created.created_at == MONDAY


@pytest.mark.asyncio
async def test_update_rejects_inconsistent_durations(policies) -> None:
    service = PolicyService(policies)
    with pytest.raises(ValidationException):
        await service.update_policy("policy-high", PolicyUpdateDTO(resolution_time_minutes=10))


def test_update_dto_rejects_null_for_required_fields() -> None:
    with pytest.raises(ValidationError):
        PolicyUpdateDTO(name=None)
    with pytest.raises(ValidationError):
        PolicyUpdateDTO(response_time_minutes=None)
    cleared = PolicyUpdateDTO(escalation_target=None)
    assert cleared.model_dump(exclude_unset=True) == {"escalation_target": None}


@pytest.mark.asyncio
async def test_update_cannot_activate_a_duplicate(policies) -> None:
    service = PolicyService(policies)
    spare = await service.create_policy(_create_dto(is_active=False), MONDAY)
    with pytest.raises(PolicyConflictException):
        await service.update_policy(spare.id, PolicyUpdateDTO(is_active=True))


@pytest.mark.asyncio
async def test_deactivate_then_replace(policies) -> None:
    service = PolicyService(policies)
    deactivated = await service.deactivate_policy("policy-high")
    assert not deactivated.is_active

    with pytest.raises(PolicyNotFoundException):
        await PolicyCatalog(policies).find_active_policy("high")

    replacement = await service.create_policy(_create_dto(), MONDAY)
    assert (await PolicyCatalog(policies).find_active_policy("high")).id == replacement.id


@pytest.mark.asyncio
async def test_unknown_policy_id(policies) -> None:
    with pytest.raises(ResourceNotFoundException):
        await PolicyService(policies).deactivate_policy("nope")


@pytest.mark.asyncio
async def test_seed_defaults_fills_only_missing_priorities(policies) -> None:
    service = PolicyService(policies)
    definitions = SLAConfig().seed_policies

    created = await service.seed_defaults(definitions, MONDAY)
    assert sorted(p.priority.value for p in created) == ["low", "medium"]

    assert await service.seed_defaults(definitions, MONDAY) == []

    listed = await service.list_policies()
    assert [p.priority for p in listed] == [
        Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL
    ]
