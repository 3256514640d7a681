from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from helpdesk_sla.config import SLAState, SLAType
from helpdesk_sla.core import ValidationException
from helpdesk_sla.sla.domain import SLAEvaluator, SLARecord

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
LEAD = timedelta(minutes=30)


def _minutes(n: int) -> datetime:
    return T0 + timedelta(minutes=n)


@pytest.fixture
def record() -> SLARecord:
    # Response due at T+60, resolution at T+480.
    return SLARecord(
        ticket_id="TCK-1",
        policy_id="policy-high",
        response_deadline=_minutes(60),
        resolution_deadline=_minutes(480),
    )


def test_on_track_well_before_deadlines(record: SLARecord) -> None:
    evaluated = SLAEvaluator.evaluate(record, _minutes(20), LEAD)
    assert evaluated is record
    assert evaluated.status == SLAState.ON_TRACK


def test_at_risk_inside_lead_time(record: SLARecord) -> None:
    evaluated = SLAEvaluator.evaluate(record, _minutes(45), LEAD)
    assert evaluated.status == SLAState.AT_RISK
    assert evaluated.warnings_sent == 1
    assert not evaluated.is_breached
    assert SLAEvaluator.at_risk_deadline(record, _minutes(45), LEAD) == SLAType.RESPONSE


def test_response_breach_after_deadline(record: SLARecord) -> None:
    evaluated = SLAEvaluator.evaluate(record, _minutes(90), LEAD)
    assert evaluated.status == SLAState.BREACHED
    assert evaluated.response_breached
    assert not evaluated.resolution_breached


def test_deadline_instant_itself_is_not_a_breach(record: SLARecord) -> None:
    evaluated = SLAEvaluator.evaluate(record, _minutes(60), LEAD)
    assert not evaluated.response_breached
    assert evaluated.status == SLAState.AT_RISK


def test_breach_survives_an_earlier_clock(record: SLARecord) -> None:
    breached = SLAEvaluator.evaluate(record, _minutes(90), LEAD)
    again = SLAEvaluator.evaluate(breached, _minutes(5), LEAD)
    assert again.response_breached
    assert again.status == SLAState.BREACHED


def test_first_response_in_time_stops_the_response_clock(record: SLARecord) -> None:
    responded = SLAEvaluator.record_first_response(record, _minutes(30), LEAD)
    assert responded.first_response_at == _minutes(30)

    later = SLAEvaluator.evaluate(responded, _minutes(90), LEAD)
    assert not later.response_breached
    assert later.status == SLAState.ON_TRACK


def test_late_first_response_is_a_breach(record: SLARecord) -> None:
    responded = SLAEvaluator.record_first_response(record, _minutes(90), LEAD)
    assert responded.response_breached
    assert responded.status == SLAState.BREACHED


def test_first_response_is_recorded_once(record: SLARecord) -> None:
    responded = SLAEvaluator.record_first_response(record, _minutes(30), LEAD)
    assert SLAEvaluator.record_first_response(responded, _minutes(40), LEAD) is responded


def test_resolution_freezes_the_record(record: SLARecord) -> None:
    resolved = SLAEvaluator.record_resolution(record, _minutes(100), LEAD)
    assert resolved.resolved_at == _minutes(100)
    assert resolved.response_breached
    assert resolved.status == SLAState.BREACHED

    assert SLAEvaluator.evaluate(resolved, _minutes(10_000), LEAD) is resolved
    assert SLAEvaluator.record_resolution(resolved, _minutes(200), LEAD) is resolved


def test_resolution_in_time_is_on_track(record: SLARecord) -> None:
    responded = SLAEvaluator.record_first_response(record, _minutes(10), LEAD)
    # Resolved while inside the at-risk window; the frozen status is still on_track.
    resolved = SLAEvaluator.record_resolution(responded, _minutes(470), LEAD)
    assert resolved.status == SLAState.ON_TRACK
    assert not resolved.is_breached


def test_transition_events(record: SLARecord) -> None:
    at_risk = SLAEvaluator.evaluate(record, _minutes(45), LEAD)
    events = SLAEvaluator.transitions(record, at_risk, _minutes(45))
    assert len(events) == 1
    assert events[0].new_status == SLAState.AT_RISK
    assert events[0].deadline_type == SLAType.RESPONSE

    breached = SLAEvaluator.evaluate(at_risk, _minutes(90), LEAD)
    events = SLAEvaluator.transitions(at_risk, breached, _minutes(90))
    assert [(e.deadline_type, e.new_status) for e in events] == [
        (SLAType.RESPONSE, SLAState.BREACHED)
    ]
    assert events[0].previous_status == SLAState.AT_RISK


def test_second_at_risk_entry_raises_no_event(record: SLARecord) -> None:
    responded = SLAEvaluator.record_first_response(
        SLAEvaluator.evaluate(record, _minutes(45), LEAD), _minutes(50), LEAD
    )
    assert responded.status == SLAState.ON_TRACK
    assert responded.warnings_sent == 1

    at_risk_again = SLAEvaluator.evaluate(responded, _minutes(460), LEAD)
    assert at_risk_again.status == SLAState.AT_RISK
    assert at_risk_again.warnings_sent == 2
    assert SLAEvaluator.transitions(responded, at_risk_again, _minutes(460)) == []


def test_deadlines_must_be_ordered() -> None:
    with pytest.raises(ValidationException):
        SLARecord(
            ticket_id="TCK-2",
            policy_id="p",
            response_deadline=_minutes(100),
            resolution_deadline=_minutes(50),
        )
