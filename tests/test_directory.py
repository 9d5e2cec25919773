"""
Tests for directory records: clients, suppliers, work codes, inventory, employees
"""

import pytest
from decimal import Decimal
from datetime import date

from erp_core.storage import InMemoryStorage, SQLiteStorage, RecordNotFoundError
from erp_core.audit import AuditTrail, AuditEventType
from erp_core.codes import CodeAllocator, CodeConflictError
from erp_core.directory import (
    DirectoryManager, Client, Supplier, WorkCode, InventoryItem, Employee
)


class TestDirectoryManager:
    """Test record creation and code allocation"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = DirectoryManager(
            self.storage, self.audit_trail, CodeAllocator(self.storage, self.audit_trail)
        )

    def test_create_client_allocates_code(self):
        """Test clients get sequential codes"""
        first = self.manager.create_client("Constructora Andina", city="Medellín")
        second = self.manager.create_client("Inversiones del Valle")

        assert isinstance(first, Client)
        assert first.code == "CLI-001"
        assert second.code == "CLI-002"
        assert first.city == "Medellín"
        assert second.email == ""

        events = self.audit_trail.get_events_by_type(AuditEventType.CLIENT_CREATED)
        assert len(events) == 2
        assert events[0].metadata["code"] == "CLI-001"

    def test_each_entity_has_its_sequence(self):
        """Test prefixes and widths per entity"""
        assert self.manager.create_supplier("Ferretería Central").code == "PROV-001"
        assert self.manager.create_work_code("Pintura m2").code == "COD-001"
        assert self.manager.create_inventory_item("Cemento gris").sku == "INV-0001"
        assert self.manager.create_employee("Ana Gómez").code == "EMP-001"

    def test_explicit_code(self):
        """Test caller-supplied codes and conflicts"""
        client = self.manager.create_client("Acme", code="CLI-100")
        assert client.code == "CLI-100"
        assert self.manager.peek_next_code("client") == "CLI-101"

        with pytest.raises(CodeConflictError):
            self.manager.create_client("Other", code="CLI-100")

    def test_code_in_values_is_used(self):
        """Test a code inside the values is treated as the explicit code"""
        client = self.manager.create("client", {"name": "Acme", "code": "CLI-050"})
        item = self.manager.create("inventory_item", {"name": "Cemento", "sku": " INV-0200 "})

        assert client.code == "CLI-050"
        assert item.sku == "INV-0200"
        assert self.manager.create_client("Next").code == "CLI-051"

        with pytest.raises(CodeConflictError):
            self.manager.create("client", {"name": "Again", "code": "CLI-050"})

    def test_code_in_values_must_match_argument(self):
        """Test two different codes are refused and the same one is accepted"""
        with pytest.raises(ValueError, match="Conflicting codes"):
            self.manager.create("client", {"name": "Acme", "code": "CLI-007"}, code="CLI-008")
        assert self.storage.count("clients") == 0

        client = self.manager.create("client", {"name": "Acme", "code": "CLI-007"}, code="CLI-007")
        assert client.code == "CLI-007"

    def test_blank_code_in_values_is_generated(self):
        """Test an empty code in the values falls back to the sequence"""
        client = self.manager.create("client", {"name": "Acme", "code": ""})
        assert client.code == "CLI-001"

    def test_malformed_prefixed_code_is_rejected(self):
        """Test a prefixed code without a number cannot stall the sequence"""
        self.manager.create_client("A")

        with pytest.raises(ValueError):
            self.manager.create_client("B", code="CLI-ABC")

        assert self.manager.create_client("C").code == "CLI-002"

    def test_defaults_applied(self):
        """Test missing fields fall back to their defaults"""
        supplier = self.manager.create_supplier("Ferretería Central")
        item = self.manager.create_inventory_item("Cemento gris")
        employee = self.manager.create_employee("Ana Gómez")

        assert supplier.category == "MIXTO"
        assert item.category == "MATERIAL"
        assert item.location == "BODEGA"
        assert item.unit == "UND"
        assert item.quantity == Decimal('0')
        assert item.active is True
        assert employee.state == "ACTIVO"
        assert employee.hire_date is None

    def test_typed_values_are_stored(self):
        """Test numbers and dates survive storage"""
        work_code = self.manager.create_work_code(
            "Pintura m2", labor_cost=Decimal('12000'), materials_cost="8000.50"
        )
        employee = self.manager.create_employee(
            "Ana Gómez", base_salary=Decimal('2500000'), hire_date=date(2023, 5, 2)
        )

        loaded = self.manager.get_work_code(work_code.id)
        assert isinstance(loaded, WorkCode)
        assert loaded.total_cost == Decimal('20000.50')
        assert self.manager.get_employee(employee.id).hire_date == date(2023, 5, 2)

    @pytest.mark.parametrize("entity, values", [
        ("client", {}),
        ("client", {"name": "  "}),
        ("client", {"name": "Acme", "favourite_color": "blue"}),
        ("work_code", {"name": "Pintura", "labor_cost": "abc"}),
        ("work_code", {"name": "Pintura", "labor_cost": "-1"}),
        ("employee", {"name": "Ana"}),
        ("vehicle", {"name": "Truck"}),
    ])
    def test_create_validation(self, entity, values):
        """Test invalid records are rejected before a code is used"""
        with pytest.raises(ValueError):
            self.manager.create(entity, values)
        assert self.storage.count("clients") == 0

    def test_get_by_code_and_list(self):
        """Test lookups and code ordering"""
        self.manager.create_client("B", code="CLI-005")
        self.manager.create_client("A", code="CLI-002")

        assert self.manager.get_by_code("client", "CLI-002").name == "A"
        assert self.manager.get_by_code("client", "CLI-999") is None
        assert [c.code for c in self.manager.list_clients()] == ["CLI-002", "CLI-005"]

    def test_update(self):
        """Test updates keep the code"""
        client = self.manager.create_client("Acme")

        updated = self.manager.update("client", client.id, {"phone": "3001234567"})

        assert updated.phone == "3001234567"
        assert updated.code == "CLI-001"
        assert self.manager.get_client(client.id).phone == "3001234567"

    def test_update_validation(self):
        """Test code changes and unknown records are refused"""
        client = self.manager.create_client("Acme")

        with pytest.raises(ValueError):
            self.manager.update("client", client.id, {"code": "CLI-999"})
        with pytest.raises(ValueError):
            self.manager.update("client", client.id, {"name": ""})
        with pytest.raises(RecordNotFoundError):
            self.manager.update("client", "missing", {"phone": "1"})

    def test_delete(self):
        """Test deletion"""
        client = self.manager.create_client("Acme")

        assert self.manager.delete("client", client.id) is True
        assert self.manager.get_client(client.id) is None
        assert self.manager.delete("client", client.id) is False

    def test_from_dict_defaults(self):
        """Test sparse stored rows are completed on load"""
        item = InventoryItem.from_dict({
            "id": "i1",
            "created_at": "2024-01-01T00:00:00+00:00",
            "updated_at": "2024-01-01T00:00:00+00:00",
            "name": "Arena",
            "quantity": None,
        })

        assert item.sku == ""
        assert item.quantity == Decimal('0')
        assert item.unit == "UND"
        assert item.active is True


class TestInventory:
    """Test stock handling"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = DirectoryManager(
            self.storage, self.audit_trail, CodeAllocator(self.storage, self.audit_trail)
        )
        self.item = self.manager.create_inventory_item(
            "Cemento gris", quantity="20", min_stock="5", unit_value="32000"
        )

    def test_item_values(self):
        """Test derived inventory values"""
        assert self.item.total_value == Decimal('640000')
        assert self.item.is_low_stock is False

    def test_adjust_stock(self):
        """Test additions and removals"""
        self.manager.adjust_stock(self.item.id, Decimal('10'), "Compra")
        item = self.manager.adjust_stock(self.item.id, Decimal('-25'), "Obra 12")

        assert item.quantity == Decimal('5')
        assert self.manager.get_inventory_item(self.item.id).quantity == Decimal('5')
        assert len(self.audit_trail.get_events_by_type(AuditEventType.STOCK_ADJUSTED)) == 2

    def test_adjust_stock_insufficient(self):
        """Test stock cannot go negative"""
        with pytest.raises(ValueError, match="Insufficient stock"):
            self.manager.adjust_stock(self.item.id, Decimal('-21'))
        with pytest.raises(RecordNotFoundError):
            self.manager.adjust_stock("missing", Decimal('1'))

    def test_low_stock_items(self):
        """Test low stock includes items at their minimum, active only"""
        self.manager.adjust_stock(self.item.id, Decimal('-15'))
        inactive = self.manager.create_inventory_item("Varilla", quantity="0", active=False)
        healthy = self.manager.create_inventory_item("Arena", quantity="100", min_stock="10")

        low = [item.id for item in self.manager.get_low_stock_items()]

        assert low == [self.item.id]
        assert inactive.id not in low
        assert healthy.id not in low


class TestDirectoryOnSQLite:
    """Test the directory against the persistent backend"""

    def test_codes_on_sqlite(self):
        """Test code sequence and lookups on SQLite"""
        storage = SQLiteStorage(":memory:")
        audit_trail = AuditTrail(storage)
        manager = DirectoryManager(storage, audit_trail, CodeAllocator(storage, audit_trail))

        first = manager.create_supplier("Ferretería Central")
        second = manager.create_supplier("Maderas del Sur")

        assert isinstance(first, Supplier)
        assert (first.code, second.code) == ("PROV-001", "PROV-002")
        assert manager.get_by_code("employee", "EMP-001") is None

        employee = manager.create_employee("Ana Gómez", code="EMP-010")
        assert manager.peek_next_code("employee") == "EMP-011"
        assert isinstance(manager.get_by_code("employee", "EMP-010"), Employee)
        assert manager.get_by_code("employee", "EMP-010").id == employee.id
        storage.close()
