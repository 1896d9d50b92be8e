"""
Per-call cost resolution.

Derives the cost recorded with a performance log from the server's
registered cost per call.
"""

from enum import Enum
from typing import Optional

from mcp_monitor.storage.models import MonitoredServer


class CostPolicy(Enum):
    """Which logged calls are charged the server's cost per call."""
    CHARGE_ALL = "charge_all"                    # Failed calls are billed too
    CHARGE_SUCCESS_ONLY = "charge_success_only"  # Failed calls cost nothing


def resolve_call_cost(
    server: Optional[MonitoredServer],
    success: bool,
    policy: CostPolicy = CostPolicy.CHARGE_ALL
) -> Optional[float]:
    """Resolve the cost to record for one call.

    The value is a snapshot: later changes to the server's cost do not touch
    logs already written.

    Args:
        server: Registry entry for the called server, None if unknown
        success: Outcome of the call
        policy: Charging policy for failed calls

    Returns:
        Cost in USD, or None when the server or its cost is unknown
    """
    if server is None or server.cost_per_call is None:
        return None
    if not success and policy == CostPolicy.CHARGE_SUCCESS_ONLY:
        return 0.0
    return float(server.cost_per_call)
