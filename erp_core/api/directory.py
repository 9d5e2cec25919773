"""
Directory endpoints: clients, suppliers, work codes, inventory and employees
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, status

from .system import ErpSystem, get_erp_system, http_error
from .schemas import CreateRecordRequest, UpdateRecordRequest, StockAdjustmentRequest
from ..currency import decimal_from_string


def build_router(entity: str, label: str, router: Optional[APIRouter] = None) -> APIRouter:
    """CRUD routes for one directory entity, added to router when given"""
    if router is None:
        router = APIRouter()

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_record(
        request: CreateRecordRequest,
        system: ErpSystem = Depends(get_erp_system)
    ):
        try:
            record = system.directory_manager.create(entity, request.attributes, request.code)
        except ValueError as e:
            raise http_error(e)
        return record.to_dict()

    @router.get("")
    async def list_records(system: ErpSystem = Depends(get_erp_system)):
        return {"records": [r.to_dict() for r in system.directory_manager.list_records(entity)]}

    @router.get("/next-code")
    async def preview_next_code(system: ErpSystem = Depends(get_erp_system)):
        """Code the next record would get; nothing is reserved"""
        return {"code": system.directory_manager.peek_next_code(entity)}

    @router.get("/{record_id}")
    async def get_record(record_id: str, system: ErpSystem = Depends(get_erp_system)):
        record = system.directory_manager.get(entity, record_id)
        if not record:
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return record.to_dict()

    @router.patch("/{record_id}")
    async def update_record(
        record_id: str,
        request: UpdateRecordRequest,
        system: ErpSystem = Depends(get_erp_system)
    ):
        try:
            record = system.directory_manager.update(entity, record_id, request.attributes)
        except ValueError as e:
            raise http_error(e)
        return record.to_dict()

    @router.delete("/{record_id}")
    async def delete_record(record_id: str, system: ErpSystem = Depends(get_erp_system)):
        if not system.directory_manager.delete(entity, record_id):
            raise HTTPException(status_code=404, detail=f"{label} not found")
        return {"message": f"{label} deleted successfully"}

    return router


clients_router = build_router("client", "Client")
suppliers_router = build_router("supplier", "Supplier")
work_codes_router = build_router("work_code", "Work code")
employees_router = build_router("employee", "Employee")

inventory_router = APIRouter()


@inventory_router.get("/low-stock")
async def get_low_stock_items(system: ErpSystem = Depends(get_erp_system)):
    """Active items at or below their minimum stock"""
    return {"records": [i.to_dict() for i in system.directory_manager.get_low_stock_items()]}


@inventory_router.post("/{item_id}/stock")
async def adjust_stock(
    item_id: str,
    request: StockAdjustmentRequest,
    system: ErpSystem = Depends(get_erp_system)
):
    try:
        item = system.directory_manager.adjust_stock(
            item_id, decimal_from_string(request.delta), request.reason
        )
    except ValueError as e:
        raise http_error(e)
    return item.to_dict()


# Registered after the fixed paths so /{record_id} does not shadow them
build_router("inventory_item", "Inventory item", inventory_router)
