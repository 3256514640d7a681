from __future__ import annotations

from datetime import datetime, timedelta, timezone

from helpdesk_sla.config import SLAState
from helpdesk_sla.sla.domain import ComplianceAggregator, SLARecord

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def _record(ticket_id: str, **fields) -> SLARecord:
    return SLARecord(
        ticket_id=ticket_id,
        policy_id="p",
        response_deadline=T0 + timedelta(hours=1),
        resolution_deadline=T0 + timedelta(hours=8),
        **fields,
    )


def test_empty_fleet_is_fully_compliant() -> None:
    stats = ComplianceAggregator.summarize([])
    assert stats.total == 0
    assert stats.compliance_rate_str == "100.0"
    assert stats.to_dict() == {
        "total": 0,
        "onTrack": 0,
        "atRisk": 0,
        "breached": 0,
        "responseBreaches": 0,
        "resolutionBreaches": 0,
        "complianceRate": "100.0",
    }


def test_active_counts_exclude_resolved_records() -> None:
    records = [
        _record("A"),
        _record("B", status=SLAState.AT_RISK),
        _record("C", status=SLAState.BREACHED, response_breached=True),
        # Resolved: counted in breaches and compliance only.
        _record(
            "D",
            status=SLAState.BREACHED,
            response_breached=True,
            resolution_breached=True,
            resolved_at=T0 + timedelta(hours=10),
        ),
        _record("E", resolved_at=T0 + timedelta(hours=2)),
    ]

    stats = ComplianceAggregator.summarize(records)

    assert (stats.total, stats.on_track, stats.at_risk, stats.breached) == (3, 1, 1, 1)
    assert stats.response_breaches == 2
    assert stats.resolution_breaches == 1
    # 3 of 5 records never breached.
    assert stats.compliance_rate == 60.0
    assert stats.to_dict()["complianceRate"] == "60.0"


def test_rate_is_rounded_to_one_decimal() -> None:
    records = [_record("A"), _record("B"), _record("C", response_breached=True, status=SLAState.BREACHED)]
    stats = ComplianceAggregator.summarize(records)
    assert stats.compliance_rate_str == "66.7"


def test_rate_ties_round_up() -> None:
    # 13 of 16 compliant is exactly 81.25.
    records = [_record(f"T{i}") for i in range(13)] + [
        _record(f"B{i}", status=SLAState.BREACHED, resolution_breached=True) for i in range(3)
    ]
    stats = ComplianceAggregator.summarize(records)
    assert stats.compliance_rate == 81.3
    assert stats.compliance_rate_str == "81.3"
