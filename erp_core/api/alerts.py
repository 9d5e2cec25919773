"""
Alert endpoints
"""

from fastapi import APIRouter, Depends

from .system import ErpSystem, get_erp_system, http_error
from .schemas import EvaluateAlertsRequest


router = APIRouter()


@router.get("/rules")
async def list_rules(system: ErpSystem = Depends(get_erp_system)):
    return {"rules": [rule.to_dict() for rule in system.alert_engine.rules]}


@router.post("/rules/{rule_id}/toggle")
async def toggle_rule(rule_id: str, system: ErpSystem = Depends(get_erp_system)):
    try:
        rule = system.alert_engine.toggle_rule(rule_id)
    except ValueError as e:
        raise http_error(e)
    return rule.to_dict()


@router.post("/evaluate")
async def evaluate_alerts(
    request: EvaluateAlertsRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    """Evaluate the rules against current inventory, payables and the given vehicles"""
    suppliers = system.directory_manager.list_suppliers()
    notifications = system.alert_engine.refresh(
        inventory_items=system.directory_manager.list_inventory_items(),
        vehicles=[v.to_vehicle() for v in request.vehicles],
        payables=system.payable_manager.list_payables(),
        today=request.today,
        supplier_names={s.id: s.name for s in suppliers}
    )
    return {
        "notifications": [n.to_dict() for n in notifications],
        "unread_count": system.alert_engine.unread_count,
    }


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str, system: ErpSystem = Depends(get_erp_system)):
    return {"updated": system.alert_engine.mark_as_read(notification_id)}
