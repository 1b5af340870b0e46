from fastapi import APIRouter, Depends

from coursedesk.schemas.entitlement import EntitlementResponse, FocusRefreshResponse
from coursedesk.services.entitlement import (
    EntitlementGate,
    EntitlementState,
    get_entitlement_gate,
)

router = APIRouter(prefix="/api/entitlement", tags=["entitlement"])


def _to_entitlement_response(state: EntitlementState) -> EntitlementResponse:
    return EntitlementResponse(
        configured=state.configured,
        authenticated=state.authenticated,
        status=state.status,
        read_only=state.read_only,
        plan_code=state.plan_code,
        days_until_read_only=state.days_until_read_only,
        current_period_end=state.current_period_end,
        grace_until=state.grace_until,
        error=state.error,
        last_checked_at=state.last_checked_at,
    )


@router.get("", response_model=EntitlementResponse)
def get_entitlement(gate: EntitlementGate = Depends(get_entitlement_gate)):
    return _to_entitlement_response(gate.state)


@router.post("/refresh", response_model=EntitlementResponse)
def refresh_entitlement(gate: EntitlementGate = Depends(get_entitlement_gate)):
    return _to_entitlement_response(gate.refresh())


@router.post("/focus", response_model=FocusRefreshResponse)
def refresh_on_focus(gate: EntitlementGate = Depends(get_entitlement_gate)):
    refreshed = gate.refresh_on_focus()
    return FocusRefreshResponse(
        refreshed=refreshed,
        entitlement=_to_entitlement_response(gate.state),
    )
