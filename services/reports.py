"""Office-wide figures for the dashboard."""

from __future__ import annotations

from typing import Any, Dict

from services.cases import count_cases
from services.leads import count_leads
from services.models import CaseStatus
from services.payments import list_payments, serialize_payments, total_revenue

RECENT_PAYMENTS = 5


def dashboard_stats() -> Dict[str, Any]:
    """Case and lead counts, revenue across all payments, and the latest payments."""
    recent, _ = list_payments(page=1, limit=RECENT_PAYMENTS)
    return {
        "totalCases": count_cases(),
        "activeCases": count_cases(CaseStatus.ACTIVE.value),
        "totalLeads": count_leads(),
        "totalRevenue": total_revenue(),
        "recentPayments": serialize_payments(recent),
    }
