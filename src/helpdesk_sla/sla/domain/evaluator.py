"""
SLA Evaluator
=============

Pure functions that reclassify an SLA record against a point in time.

Nothing here performs I/O or reads the wall clock: ``now`` is always an
argument, and the caller persists whatever comes back.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional

from helpdesk_sla.config import SLAState, SLAType
from helpdesk_sla.sla.domain.entities import EscalationEvent, SLARecord

DEFAULT_AT_RISK_LEAD = timedelta(minutes=30)


class SLAEvaluator:
    """
    Stateless SLA status calculations.

    Breach flags are sticky: every function ORs the stored flag into the
    new value, so no input (including a clock that moved backwards) can
    clear a breach.
    """

    @staticmethod
    def evaluate(
        record: SLARecord,
        now: datetime,
        at_risk_lead: timedelta = DEFAULT_AT_RISK_LEAD,
    ) -> SLARecord:
        """
        Recompute status and breach flags of ``record`` as of ``now``.

        Resolved records are returned unchanged. A record is ``at_risk`` when
        it is not breached and ``now`` is within ``at_risk_lead`` of a
        deadline that has not been met yet.

        Returns:
            The same instance when nothing changed, otherwise an updated copy
        """
        if record.is_resolved:
            return record

        response_breached = record.response_breached or (
            record.first_response_at is None and now > record.response_deadline
        )
        resolution_breached = record.resolution_breached or now > record.resolution_deadline

        if response_breached or resolution_breached:
            status = SLAState.BREACHED
        elif SLAEvaluator.at_risk_deadline(record, now, at_risk_lead) is not None:
            status = SLAState.AT_RISK
        else:
            status = SLAState.ON_TRACK

        warnings_sent = record.warnings_sent
        if status == SLAState.AT_RISK and record.status == SLAState.ON_TRACK:
            warnings_sent += 1

        if (
            status == record.status
            and response_breached == record.response_breached
            and resolution_breached == record.resolution_breached
            and warnings_sent == record.warnings_sent
        ):
            return record

        return replace(
            record,
            status=status,
            response_breached=response_breached,
            resolution_breached=resolution_breached,
            warnings_sent=warnings_sent,
        )

    @staticmethod
    def at_risk_deadline(
        record: SLARecord,
        now: datetime,
        at_risk_lead: timedelta = DEFAULT_AT_RISK_LEAD,
    ) -> Optional[SLAType]:
        """
        Return the nearest unmet deadline that ``now`` is within the lead of.

        Deadlines already passed do not count; those are breaches.
        """
        if (
            record.first_response_at is None
            and record.response_deadline - at_risk_lead <= now <= record.response_deadline
        ):
            return SLAType.RESPONSE
        if record.resolution_deadline - at_risk_lead <= now <= record.resolution_deadline:
            return SLAType.RESOLUTION
        return None

    @staticmethod
    def transitions(
        before: SLARecord,
        after: SLARecord,
        now: datetime,
    ) -> List[EscalationEvent]:
        """
        Escalation events implied by moving from ``before`` to ``after``.

        One event per breach flag that flipped, plus one when the record
        enters ``at_risk`` for the first time (no warning sent before).
        """
        events = []

        if after.response_breached and not before.response_breached:
            events.append(EscalationEvent(
                ticket_id=after.ticket_id,
                previous_status=before.status,
                new_status=after.status,
                deadline_type=SLAType.RESPONSE,
                triggered_at=now,
            ))

        if after.resolution_breached and not before.resolution_breached:
            events.append(EscalationEvent(
                ticket_id=after.ticket_id,
                previous_status=before.status,
                new_status=after.status,
                deadline_type=SLAType.RESOLUTION,
                triggered_at=now,
            ))

        if (
            after.status == SLAState.AT_RISK
            and before.status != SLAState.AT_RISK
            and before.warnings_sent == 0
        ):
            # Response deadline never comes after resolution, so an unmet
            # response deadline is always the nearer one.
            if after.first_response_at is None and now <= after.response_deadline:
                deadline_type = SLAType.RESPONSE
            else:
                deadline_type = SLAType.RESOLUTION
            events.append(EscalationEvent(
                ticket_id=after.ticket_id,
                previous_status=before.status,
                new_status=after.status,
                deadline_type=deadline_type,
                triggered_at=now,
            ))

        return events

    @staticmethod
    def record_first_response(
        record: SLARecord,
        at: datetime,
        at_risk_lead: timedelta = DEFAULT_AT_RISK_LEAD,
    ) -> SLARecord:
        """
        Set ``first_response_at`` once.

        The record is evaluated at ``at`` first so that a late response is
        recorded as a response breach.
        """
        if record.first_response_at is not None or record.is_resolved:
            return record

        settled = SLAEvaluator.evaluate(record, at, at_risk_lead)
        return SLAEvaluator.evaluate(replace(settled, first_response_at=at), at, at_risk_lead)

    @staticmethod
    def record_resolution(
        record: SLARecord,
        at: datetime,
        at_risk_lead: timedelta = DEFAULT_AT_RISK_LEAD,
    ) -> SLARecord:
        """
        Set ``resolved_at`` once and freeze the record.

        Breach flags are settled as of ``at``; the frozen status is
        ``breached`` if any flag is set, otherwise ``on_track``.
        """
        if record.is_resolved:
            return record

        settled = SLAEvaluator.evaluate(record, at, at_risk_lead)
        return replace(
            settled,
            resolved_at=at,
            status=SLAState.BREACHED if settled.is_breached else SLAState.ON_TRACK,
        )
