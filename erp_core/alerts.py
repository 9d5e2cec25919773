"""
Alerts Module

Rule-based notifications over inventory, vehicle documents and supplier
payables. Evaluation is pure: it takes the current records and a reference
date and returns notifications. Notification ids are stable for the same
rule, item and day, so read flags survive re-evaluation.
"""

from datetime import date, datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum

from .directory import InventoryItem
from .payables import Payable
from .storage import RecordNotFoundError
from .logging_config import get_logger, log_action


class AlertType(Enum):
    INVENTORY_STOCK = "INVENTORY_STOCK"
    DOCUMENT_EXPIRY = "DOCUMENT_EXPIRY"


class AlertSeverity(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)

    def escalate_to(self, other: 'AlertSeverity') -> 'AlertSeverity':
        """The higher of the two severities"""
        return other if other.rank > self.rank else self


class ItemType(Enum):
    INVENTORY = "INVENTARIO"
    VEHICLE = "VEHICULO"
    INVOICE = "FACTURA"


# Document categories understood by DOCUMENT_EXPIRY rules
SOAT = "SOAT"
TECHNICAL_INSPECTION = "TECNO"
PAYABLES = "CXP"


@dataclass
class VehicleDocuments:
    """Expiry dates of the mandatory documents of a vehicle"""
    vehicle_id: str
    plate: str
    soat_expiry: Optional[date] = None
    inspection_expiry: Optional[date] = None


@dataclass
class AlertRule:
    id: str
    type: AlertType
    name: str
    severity: AlertSeverity
    message_template: str
    enabled: bool = True
    threshold_days: Optional[int] = None
    category_filter: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "severity": self.severity.value,
            "message_template": self.message_template,
            "enabled": self.enabled,
            "threshold_days": self.threshold_days,
            "category_filter": list(self.category_filter),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertRule':
        return cls(
            id=data["id"],
            type=AlertType(data["type"]),
            name=data.get("name") or "",
            severity=AlertSeverity(data.get("severity") or AlertSeverity.MEDIUM.value),
            message_template=data.get("message_template") or "",
            enabled=data.get("enabled", True),
            threshold_days=data.get("threshold_days"),
            category_filter=list(data.get("category_filter") or []),
        )


@dataclass
class AlertNotification:
    id: str
    rule_id: str
    item_id: str
    item_type: ItemType
    message: str
    severity: AlertSeverity
    generated_at: datetime
    is_read: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "item_id": self.item_id,
            "item_type": self.item_type.value,
            "message": self.message,
            "severity": self.severity.value,
            "generated_at": self.generated_at.isoformat(),
            "is_read": self.is_read,
            "metadata": self.metadata,
        }


def default_rules() -> List[AlertRule]:
    """Rules every installation starts with"""
    return [
        AlertRule(
            id="RULE-STOCK-LOW",
            type=AlertType.INVENTORY_STOCK,
            name="Stock Mínimo Bajo",
            severity=AlertSeverity.HIGH,
            message_template="El ítem {item} tiene stock bajo ({qty} / {min})",
        ),
        AlertRule(
            id="RULE-SOAT",
            type=AlertType.DOCUMENT_EXPIRY,
            name="Vencimiento SOAT",
            severity=AlertSeverity.CRITICAL,
            message_template="El SOAT del vehículo {item} vence en {days} días",
            threshold_days=30,
            category_filter=[SOAT],
        ),
        AlertRule(
            id="RULE-TECNO",
            type=AlertType.DOCUMENT_EXPIRY,
            name="Vencimiento Tecnomecánica",
            severity=AlertSeverity.HIGH,
            message_template="La Tecnomecánica del vehículo {item} vence en {days} días",
            threshold_days=30,
            category_filter=[TECHNICAL_INSPECTION],
        ),
        AlertRule(
            id="RULE-CXP",
            type=AlertType.DOCUMENT_EXPIRY,
            name="Facturas Proveedor por Vencer",
            severity=AlertSeverity.MEDIUM,
            message_template="Factura {item} de {vendor} vence en {days} días",
            threshold_days=5,
            category_filter=[PAYABLES],
        ),
    ]


def render_message(template: str, **values: Any) -> str:
    """Fill {placeholders}; unknown placeholders are left as they are"""
    message = template
    for key, value in values.items():
        message = message.replace("{" + key + "}", str(value))
    return message


def build_notification_id(rule: AlertRule, category: str, item_id: str, day: date) -> str:
    """Stable id of the notification one rule raises for one item on one day"""
    return f"NOTIF-{category}-{item_id}-{day.isoformat()}-{rule.id}"


def merge_read_state(
    previous: Iterable[AlertNotification],
    fresh: Iterable[AlertNotification]
) -> List[AlertNotification]:
    """Fresh notifications, keeping the read flag of those seen before"""
    read_ids = {n.id for n in previous if n.is_read}
    return [replace(n, is_read=True) if n.id in read_ids else n for n in fresh]


class AlertEngine:
    """
    Holds alert rules and evaluates them against current records
    """

    def __init__(self, rules: Optional[List[AlertRule]] = None):
        self.rules: List[AlertRule] = list(rules) if rules is not None else default_rules()
        self.notifications: List[AlertNotification] = []
        self.logger = get_logger("erp.alerts")

    # Rule management

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def add_rule(self, rule: AlertRule) -> AlertRule:
        if self.get_rule(rule.id):
            raise ValueError(f"Alert rule {rule.id} already exists")
        self.rules.append(rule)
        return rule

    def update_rule(self, rule_id: str, **changes) -> AlertRule:
        rule = self._require_rule(rule_id)
        if 'id' in changes:
            raise ValueError("Rule id cannot be changed")
        updated = replace(rule, **changes)
        self.rules[self.rules.index(rule)] = updated
        return updated

    def toggle_rule(self, rule_id: str) -> AlertRule:
        rule = self._require_rule(rule_id)
        rule.enabled = not rule.enabled
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        rule = self.get_rule(rule_id)
        if not rule:
            return False
        self.rules.remove(rule)
        return True

    # Evaluation

    def evaluate(
        self,
        inventory_items: Iterable[InventoryItem] = (),
        vehicles: Iterable[VehicleDocuments] = (),
        payables: Iterable[Payable] = (),
        today: Optional[date] = None,
        supplier_names: Optional[Dict[str, str]] = None
    ) -> List[AlertNotification]:
        """
        Evaluate every enabled rule

        Args:
            inventory_items: Items checked by INVENTORY_STOCK rules
            vehicles: Vehicles checked by SOAT / TECNO document rules
            payables: Supplier payables checked by CXP rules
            today: Reference date, defaults to today
            supplier_names: Supplier id to display name, for payable messages

        Returns:
            Notifications, unread
        """
        today = today or date.today()
        inventory_items = list(inventory_items)
        vehicles = list(vehicles)
        payables = list(payables)
        generated_at = datetime.now(timezone.utc)

        notifications: List[AlertNotification] = []
        for rule in self.rules:
            if not rule.enabled:
                continue
            if rule.type == AlertType.INVENTORY_STOCK:
                notifications.extend(self._check_stock(rule, inventory_items, today, generated_at))
            elif rule.type == AlertType.DOCUMENT_EXPIRY:
                if SOAT in rule.category_filter:
                    notifications.extend(self._check_vehicle_document(
                        rule, vehicles, "soat_expiry", SOAT, today, generated_at
                    ))
                if TECHNICAL_INSPECTION in rule.category_filter:
                    notifications.extend(self._check_vehicle_document(
                        rule, vehicles, "inspection_expiry", TECHNICAL_INSPECTION, today, generated_at
                    ))
                if PAYABLES in rule.category_filter:
                    notifications.extend(self._check_payables(
                        rule, payables, supplier_names or {}, today, generated_at
                    ))

        log_action(
            self.logger, "debug", "Alert rules evaluated",
            action="evaluate_alerts",
            extra={"notifications": len(notifications), "date": today.isoformat()}
        )
        return notifications

    def refresh(
        self,
        inventory_items: Iterable[InventoryItem] = (),
        vehicles: Iterable[VehicleDocuments] = (),
        payables: Iterable[Payable] = (),
        today: Optional[date] = None,
        supplier_names: Optional[Dict[str, str]] = None
    ) -> List[AlertNotification]:
        """Re-evaluate and replace the held notifications, keeping read flags"""
        fresh = self.evaluate(inventory_items, vehicles, payables, today, supplier_names)
        self.notifications = merge_read_state(self.notifications, fresh)
        return self.notifications

    def mark_as_read(self, notification_id: str) -> bool:
        for index, notification in enumerate(self.notifications):
            if notification.id == notification_id:
                self.notifications[index] = replace(notification, is_read=True)
                return True
        return False

    def mark_all_as_read(self) -> None:
        self.notifications = [replace(n, is_read=True) for n in self.notifications]

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.is_read)

    def _check_stock(self, rule, items, today, generated_at):
        for item in items:
            if not item.active or item.quantity > item.min_stock:
                continue
            yield AlertNotification(
                id=build_notification_id(rule, "STOCK", item.id, today),
                rule_id=rule.id,
                item_id=item.id,
                item_type=ItemType.INVENTORY,
                message=render_message(
                    rule.message_template,
                    item=item.name or item.sku, qty=item.quantity, min=item.min_stock
                ),
                severity=rule.severity,
                generated_at=generated_at,
                metadata={"sku": item.sku, "quantity": str(item.quantity), "min_stock": str(item.min_stock)}
            )

    def _check_vehicle_document(self, rule, vehicles, attribute, category, today, generated_at):
        threshold = rule.threshold_days if rule.threshold_days is not None else 30
        for vehicle in vehicles:
            expiry = getattr(vehicle, attribute)
            if expiry is None:
                continue
            days_left = (expiry - today).days
            if days_left > threshold:
                continue
            severity = rule.severity
            if days_left < 0:
                severity = severity.escalate_to(AlertSeverity.CRITICAL)
            yield AlertNotification(
                id=build_notification_id(rule, category, vehicle.vehicle_id, today),
                rule_id=rule.id,
                item_id=vehicle.vehicle_id,
                item_type=ItemType.VEHICLE,
                message=render_message(rule.message_template, item=vehicle.plate, days=days_left),
                severity=severity,
                generated_at=generated_at,
                metadata={"document": category, "expiry": expiry.isoformat(), "days_left": days_left}
            )

    def _check_payables(self, rule, payables, supplier_names, today, generated_at):
        threshold = rule.threshold_days if rule.threshold_days is not None else 5
        for payable in payables:
            if payable.is_paid or not payable.pending.is_positive():
                continue
            days_left = payable.days_until_due(today)
            if days_left > threshold:
                continue
            severity = rule.severity
            if days_left < 0:
                severity = severity.escalate_to(AlertSeverity.HIGH)
            yield AlertNotification(
                id=build_notification_id(rule, PAYABLES, payable.id, today),
                rule_id=rule.id,
                item_id=payable.id,
                item_type=ItemType.INVOICE,
                message=render_message(
                    rule.message_template,
                    item=payable.supplier_invoice_number or payable.id,
                    vendor=supplier_names.get(payable.supplier_id, payable.supplier_id),
                    days=days_left
                ),
                severity=severity,
                generated_at=generated_at,
                metadata={
                    "due_date": payable.due_date.isoformat(),
                    "days_left": days_left,
                    "pending": str(payable.pending.amount)
                }
            )

    def _require_rule(self, rule_id: str) -> AlertRule:
        rule = self.get_rule(rule_id)
        if not rule:
            raise RecordNotFoundError("Alert rule", rule_id)
        return rule
