"""
Directory Module

Code-bearing master records: clients, suppliers, work codes, inventory items
and employees. Every record gets a sequential human-readable code through the
CodeAllocator unless the caller supplies one.

Records are typed dataclasses with explicit field lists. Conversion from a
stored dict applies fixed defaulting rules: missing numbers become 0, missing
strings become "".
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type
import uuid

from .storage import StorageInterface, StorageRecord, RecordNotFoundError
from .audit import AuditTrail, AuditEventType
from .codes import CodeAllocator, CodeSequence
from .logging_config import get_logger, log_action, resource_ref


@dataclass
class DirectoryRecord(StorageRecord):
    """Base for code-bearing records"""
    TEXT_FIELDS: ClassVar[Tuple[str, ...]] = ()
    NUMBER_FIELDS: ClassVar[Tuple[str, ...]] = ()
    DATE_FIELDS: ClassVar[Tuple[str, ...]] = ()
    FLAG_FIELDS: ClassVar[Tuple[str, ...]] = ()
    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ()
    TEXT_DEFAULTS: ClassVar[Dict[str, str]] = {}
    CODE_FIELD: ClassVar[str] = "code"
    SEQUENCE: ClassVar[CodeSequence]

    @property
    def display_code(self) -> str:
        return getattr(self, self.CODE_FIELD)

    @classmethod
    def value_fields(cls) -> Tuple[str, ...]:
        """Names of every business field (everything but id and timestamps)"""
        return cls.TEXT_FIELDS + cls.NUMBER_FIELDS + cls.DATE_FIELDS + cls.FLAG_FIELDS

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }
        for name in self.TEXT_FIELDS + self.FLAG_FIELDS:
            result[name] = getattr(self, name)
        for name in self.NUMBER_FIELDS:
            result[name] = str(getattr(self, name))
        for name in self.DATE_FIELDS:
            value = getattr(self, name)
            result[name] = value.isoformat() if value else None
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DirectoryRecord':
        values: Dict[str, Any] = {
            'id': data['id'],
            'created_at': datetime.fromisoformat(data['created_at']),
            'updated_at': datetime.fromisoformat(data['updated_at']),
        }
        for name in cls.TEXT_FIELDS:
            values[name] = data.get(name) or cls.TEXT_DEFAULTS.get(name, "")
        for name in cls.NUMBER_FIELDS:
            raw = data.get(name)
            values[name] = Decimal(str(raw)) if raw not in (None, "") else Decimal('0')
        for name in cls.DATE_FIELDS:
            raw = data.get(name)
            values[name] = date.fromisoformat(raw[:10]) if raw else None
        for name in cls.FLAG_FIELDS:
            raw = data.get(name)
            values[name] = True if raw is None else bool(raw)
        return cls(**values)


@dataclass
class Client(DirectoryRecord):
    code: str = ""
    name: str = ""
    document: str = ""
    address: str = ""
    city: str = ""
    email: str = ""
    phone: str = ""
    main_contact: str = ""
    notes: str = ""

    TEXT_FIELDS = ('code', 'name', 'document', 'address', 'city', 'email',
                   'phone', 'main_contact', 'notes')
    REQUIRED_FIELDS = ('name',)
    SEQUENCE = CodeSequence.CLIENT


@dataclass
class Supplier(DirectoryRecord):
    code: str = ""
    name: str = ""
    tax_id: str = ""
    category: str = "MIXTO"
    email: str = ""
    phone: str = ""
    bank_details: str = ""
    notes: str = ""

    TEXT_FIELDS = ('code', 'name', 'tax_id', 'category', 'email', 'phone',
                   'bank_details', 'notes')
    TEXT_DEFAULTS = {'category': "MIXTO"}
    REQUIRED_FIELDS = ('name',)
    SEQUENCE = CodeSequence.SUPPLIER


@dataclass
class WorkCode(DirectoryRecord):
    """Priced unit of work: labor plus materials"""
    code: str = ""
    name: str = ""
    description: str = ""
    labor_cost: Decimal = Decimal('0')
    materials_cost: Decimal = Decimal('0')

    TEXT_FIELDS = ('code', 'name', 'description')
    NUMBER_FIELDS = ('labor_cost', 'materials_cost')
    REQUIRED_FIELDS = ('name',)
    SEQUENCE = CodeSequence.WORK_CODE

    @property
    def total_cost(self) -> Decimal:
        return self.labor_cost + self.materials_cost


@dataclass
class InventoryItem(DirectoryRecord):
    sku: str = ""
    name: str = ""
    description: str = ""
    category: str = "MATERIAL"
    location: str = "BODEGA"
    unit: str = "UND"
    brand: str = ""
    model: str = ""
    supplier_id: str = ""
    quantity: Decimal = Decimal('0')
    min_stock: Decimal = Decimal('0')
    unit_value: Decimal = Decimal('0')
    active: bool = True

    TEXT_FIELDS = ('sku', 'name', 'description', 'category', 'location', 'unit',
                   'brand', 'model', 'supplier_id')
    TEXT_DEFAULTS = {'category': "MATERIAL", 'location': "BODEGA", 'unit': "UND"}
    NUMBER_FIELDS = ('quantity', 'min_stock', 'unit_value')
    FLAG_FIELDS = ('active',)
    REQUIRED_FIELDS = ('name',)
    CODE_FIELD = "sku"
    SEQUENCE = CodeSequence.INVENTORY

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.unit_value

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock


@dataclass
class Employee(DirectoryRecord):
    code: str = ""
    full_name: str = ""
    national_id: str = ""
    position: str = ""
    area: str = ""
    contract_type: str = ""
    phone: str = ""
    email: str = ""
    state: str = "ACTIVO"
    base_salary: Decimal = Decimal('0')
    hire_date: Optional[date] = None
    termination_date: Optional[date] = None

    TEXT_FIELDS = ('code', 'full_name', 'national_id', 'position', 'area',
                   'contract_type', 'phone', 'email', 'state')
    TEXT_DEFAULTS = {'state': "ACTIVO"}
    NUMBER_FIELDS = ('base_salary',)
    DATE_FIELDS = ('hire_date', 'termination_date')
    REQUIRED_FIELDS = ('full_name',)
    SEQUENCE = CodeSequence.EMPLOYEE


_ENTITIES: Dict[str, Tuple[Type[DirectoryRecord], AuditEventType]] = {
    "client": (Client, AuditEventType.CLIENT_CREATED),
    "supplier": (Supplier, AuditEventType.SUPPLIER_CREATED),
    "work_code": (WorkCode, AuditEventType.WORK_CODE_CREATED),
    "inventory_item": (InventoryItem, AuditEventType.INVENTORY_ITEM_CREATED),
    "employee": (Employee, AuditEventType.EMPLOYEE_CREATED),
}


def _storable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


class DirectoryManager:
    """
    CRUD for directory records with sequential code allocation
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail, allocator: CodeAllocator):
        self.storage = storage
        self.audit_trail = audit_trail
        self.allocator = allocator
        self.logger = get_logger("erp.directory")

    # Generic operations

    def create(self, entity: str, values: Dict[str, Any], code: Optional[str] = None) -> DirectoryRecord:
        """
        Create a record, allocating its code when none is given

        A code found in values counts as the explicit code.

        Raises:
            ValueError: Unknown entity or field, a missing required field, or
                two different codes
            CodeConflictError: The code could not be allocated
        """
        record_cls, event_type = self._entity(entity)
        sequence = record_cls.SEQUENCE

        values = dict(values)
        embedded_code = str(values.pop(record_cls.CODE_FIELD, None) or "").strip()
        if embedded_code:
            if code and code.strip() and code.strip() != embedded_code:
                raise ValueError(
                    f"Conflicting codes: {code.strip()} and {record_cls.CODE_FIELD} {embedded_code}"
                )
            code = embedded_code
        self._check_fields(record_cls, values)
        for name in record_cls.REQUIRED_FIELDS:
            if not str(values.get(name) or "").strip():
                raise ValueError(f"{name} is required")
        self._check_numbers(record_cls, values)

        record_id = str(uuid.uuid4())

        def build_record(allocated: str) -> Dict[str, Any]:
            now = datetime.now(timezone.utc).isoformat()
            data = {k: _storable(v) for k, v in values.items()}
            data.update({'id': record_id, 'created_at': now, 'updated_at': now})
            data[sequence.field] = allocated
            # Round-trip through the record type so the stored row is complete
            return record_cls.from_dict(data).to_dict()

        data = self.allocator.allocate_and_insert(sequence, build_record, explicit_code=code)
        record = record_cls.from_dict(data)

        log_action(
            self.logger, "info", f"{entity} created: {record.display_code}",
            action=f"create_{entity}", resource=resource_ref(sequence.table, record.id)
        )
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type=entity,
            entity_id=record.id,
            metadata={"code": record.display_code}
        )
        return record

    def get(self, entity: str, record_id: str) -> Optional[DirectoryRecord]:
        record_cls, _ = self._entity(entity)
        data = self.storage.load(record_cls.SEQUENCE.table, record_id)
        if data:
            return record_cls.from_dict(data)
        return None

    def get_by_code(self, entity: str, code: str) -> Optional[DirectoryRecord]:
        record_cls, _ = self._entity(entity)
        rows = self.storage.find(record_cls.SEQUENCE.table, {record_cls.CODE_FIELD: code})
        if rows:
            return record_cls.from_dict(rows[0])
        return None

    def list_records(self, entity: str) -> List[DirectoryRecord]:
        """Records ordered by code"""
        record_cls, _ = self._entity(entity)
        records = [record_cls.from_dict(d) for d in self.storage.load_all(record_cls.SEQUENCE.table)]
        records.sort(key=lambda r: r.display_code)
        return records

    def update(self, entity: str, record_id: str, changes: Dict[str, Any]) -> DirectoryRecord:
        """Update fields of a record; its code cannot change"""
        record_cls, _ = self._entity(entity)
        record = self.get(entity, record_id)
        if not record:
            raise RecordNotFoundError(entity, record_id)

        if record_cls.CODE_FIELD in changes:
            raise ValueError(f"{record_cls.CODE_FIELD} cannot be changed")
        self._check_fields(record_cls, changes)
        self._check_numbers(record_cls, changes)
        for name in record_cls.REQUIRED_FIELDS:
            if name in changes and not str(changes[name] or "").strip():
                raise ValueError(f"{name} is required")

        data = record.to_dict()
        data.update({k: _storable(v) for k, v in changes.items()})
        data['updated_at'] = datetime.now(timezone.utc).isoformat()
        updated = record_cls.from_dict(data)
        self.storage.save(record_cls.SEQUENCE.table, updated.id, updated.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type=entity,
            entity_id=record_id,
            metadata={"fields": sorted(changes)}
        )
        return updated

    def delete(self, entity: str, record_id: str) -> bool:
        record_cls, _ = self._entity(entity)
        deleted = self.storage.delete(record_cls.SEQUENCE.table, record_id)
        if deleted:
            self.audit_trail.log_event(
                event_type=AuditEventType.RECORD_DELETED,
                entity_type=entity,
                entity_id=record_id,
                metadata={}
            )
        return deleted

    def peek_next_code(self, entity: str) -> str:
        """Code the next record of this kind would get"""
        record_cls, _ = self._entity(entity)
        return self.allocator.peek_next(record_cls.SEQUENCE)

    # Typed shortcuts

    def create_client(self, name: str, code: Optional[str] = None, **values) -> Client:
        return self.create("client", dict(values, name=name), code)

    def create_supplier(self, name: str, code: Optional[str] = None, **values) -> Supplier:
        return self.create("supplier", dict(values, name=name), code)

    def create_work_code(self, name: str, code: Optional[str] = None, **values) -> WorkCode:
        return self.create("work_code", dict(values, name=name), code)

    def create_inventory_item(self, name: str, sku: Optional[str] = None, **values) -> InventoryItem:
        return self.create("inventory_item", dict(values, name=name), sku)

    def create_employee(self, full_name: str, code: Optional[str] = None, **values) -> Employee:
        return self.create("employee", dict(values, full_name=full_name), code)

    def get_client(self, client_id: str) -> Optional[Client]:
        return self.get("client", client_id)

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        return self.get("supplier", supplier_id)

    def get_work_code(self, work_code_id: str) -> Optional[WorkCode]:
        return self.get("work_code", work_code_id)

    def get_inventory_item(self, item_id: str) -> Optional[InventoryItem]:
        return self.get("inventory_item", item_id)

    def get_employee(self, employee_id: str) -> Optional[Employee]:
        return self.get("employee", employee_id)

    def list_clients(self) -> List[Client]:
        return self.list_records("client")

    def list_suppliers(self) -> List[Supplier]:
        return self.list_records("supplier")

    def list_work_codes(self) -> List[WorkCode]:
        return self.list_records("work_code")

    def list_inventory_items(self) -> List[InventoryItem]:
        return self.list_records("inventory_item")

    def list_employees(self) -> List[Employee]:
        return self.list_records("employee")

    # Inventory

    def adjust_stock(self, item_id: str, delta: Decimal, reason: str = "") -> InventoryItem:
        """
        Add (positive delta) or remove (negative delta) stock

        Raises:
            ValueError: Unknown item or a removal larger than the stock on hand
        """
        item = self.get_inventory_item(item_id)
        if not item:
            raise RecordNotFoundError("inventory_item", item_id)

        new_quantity = item.quantity + delta
        if new_quantity < Decimal('0'):
            raise ValueError(
                f"Insufficient stock for {item.sku}: {item.quantity} on hand, {-delta} requested"
            )

        item.quantity = new_quantity
        item.updated_at = datetime.now(timezone.utc)
        self.storage.save(CodeSequence.INVENTORY.table, item.id, item.to_dict())

        log_action(
            self.logger, "info", f"Stock adjusted for {item.sku}",
            action="adjust_stock", resource=resource_ref(InventoryItem.SEQUENCE.table, item.id),
            extra={"delta": str(delta), "quantity": str(new_quantity)}
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.STOCK_ADJUSTED,
            entity_type="inventory_item",
            entity_id=item.id,
            metadata={"delta": delta, "quantity": new_quantity, "reason": reason}
        )
        return item

    def get_low_stock_items(self) -> List[InventoryItem]:
        return [item for item in self.list_inventory_items() if item.active and item.is_low_stock]

    @staticmethod
    def _entity(entity: str) -> Tuple[Type[DirectoryRecord], AuditEventType]:
        try:
            return _ENTITIES[entity]
        except KeyError:
            raise ValueError(f"Unknown directory entity: {entity}")

    @staticmethod
    def _check_fields(record_cls: Type[DirectoryRecord], values: Dict[str, Any]) -> None:
        unknown = set(values) - set(record_cls.value_fields())
        if unknown:
            raise ValueError(f"Unknown fields for {record_cls.__name__}: {', '.join(sorted(unknown))}")

    @staticmethod
    def _check_numbers(record_cls: Type[DirectoryRecord], values: Dict[str, Any]) -> None:
        for name in record_cls.NUMBER_FIELDS:
            if values.get(name) in (None, ""):
                continue
            try:
                number = Decimal(str(values[name]))
            except InvalidOperation:
                raise ValueError(f"{name} must be a number")
            if number < Decimal('0'):
                raise ValueError(f"{name} cannot be negative")
