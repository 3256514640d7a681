"""
Compliance Aggregator
=====================

Fleet-wide SLA statistics computed from a stream of records.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from helpdesk_sla.config import SLAState
from helpdesk_sla.sla.domain.entities import SLARecord, SLAStats


class ComplianceAggregator:
    """Pure aggregation over SLA records."""

    @staticmethod
    def summarize(records: Iterable[SLARecord]) -> SLAStats:
        """
        Summarize SLA compliance.

        Status counts cover unresolved records only (the "currently active"
        view); breach counts and the compliance rate cover every record.
        An empty fleet is vacuously compliant (100.0).
        """
        active = {state: 0 for state in SLAState}
        active_total = 0
        total_all_time = 0
        breached_all_time = 0
        response_breaches = 0
        resolution_breaches = 0

        for record in records:
            total_all_time += 1
            if record.response_breached:
                response_breaches += 1
            if record.resolution_breached:
                resolution_breaches += 1
            if record.is_breached:
                breached_all_time += 1

            if not record.is_resolved:
                active_total += 1
                active[record.status] += 1

        if total_all_time == 0:
            compliance_rate = 100.0
        else:
            compliant = total_all_time - breached_all_time
            # Ties round up: 81.25 -> 81.3
            rate = Decimal(compliant * 100) / Decimal(total_all_time)
            compliance_rate = float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))

        return SLAStats(
            total=active_total,
            on_track=active[SLAState.ON_TRACK],
            at_risk=active[SLAState.AT_RISK],
            breached=active[SLAState.BREACHED],
            response_breaches=response_breaches,
            resolution_breaches=resolution_breaches,
            compliance_rate=compliance_rate,
        )
