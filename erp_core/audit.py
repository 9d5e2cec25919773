"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every record creation, payment and code conflict in the ERP is logged here.
"""

import hashlib
import json
import threading
import uuid
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal

from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # Directory events
    CLIENT_CREATED = "client_created"
    SUPPLIER_CREATED = "supplier_created"
    WORK_CODE_CREATED = "work_code_created"
    INVENTORY_ITEM_CREATED = "inventory_item_created"
    EMPLOYEE_CREATED = "employee_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    STOCK_ADJUSTED = "stock_adjusted"

    # Code allocation events
    CODE_CONFLICT = "code_conflict"

    # Obligation events
    OBLIGATION_CREATED = "obligation_created"
    OBLIGATION_UPDATED = "obligation_updated"
    OBLIGATION_DELETED = "obligation_deleted"
    OBLIGATION_PAYMENT_REGISTERED = "obligation_payment_registered"
    OBLIGATION_PAID_OFF = "obligation_paid_off"

    # Payables events
    PAYABLE_CREATED = "payable_created"
    PAYABLE_PAYMENT_MADE = "payable_payment_made"
    PAYABLE_DELETED = "payable_deleted"

    # Invoicing events
    QUOTE_CREATED = "quote_created"
    INVOICE_CREATED = "invoice_created"
    INVOICE_PAYMENT_REGISTERED = "invoice_payment_registered"
    INVOICE_VOIDED = "invoice_voided"

    # System events
    SYSTEM_START = "system_start"
    AUDIT_INTEGRITY_CHECK = "audit_integrity_check"


def _json_safe(value: Any) -> Any:
    """Convert metadata values to JSON-serializable format"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    sequence: int           # Position in the chain, starting at 1
    event_type: AuditEventType
    entity_type: str        # client, obligation, payable, invoice, ...
    entity_id: str
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any]
    user_id: Optional[str] = None

    def __post_init__(self):
        self.metadata = {k: _json_safe(v) for k, v in (self.metadata or {}).items()}

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'sequence': self.sequence,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['event_type'] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        if isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        if isinstance(data['event_type'], str):
            data['event_type'] = AuditEventType(data['event_type'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_events",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._last_hash: Optional[str] = None
        self._last_sequence = 0
        self._lock = threading.Lock()
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        """Load hash and sequence of the most recent audit event"""
        events = self.storage.load_all(self.table_name)
        if events:
            head = max(events, key=lambda x: x.get('sequence', 0))
            self._last_hash = head.get('current_hash')
            self._last_sequence = head.get('sequence', 0)

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of user who initiated the action

        Returns:
            Created AuditEvent, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            now = datetime.now(timezone.utc)

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self._last_sequence + 1,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash or "",
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())

            self._last_hash = event.current_hash
            self._last_sequence = event.sequence

            return event

    def get_events_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEvent]:
        """Get all audit events for a specific entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)
        return events

    def get_events_by_type(self, event_type: AuditEventType) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        events_data = self.storage.find(self.table_name, {'event_type': event_type.value})
        events = [AuditEvent.from_dict(data) for data in events_data]
        events.sort(key=lambda x: x.sequence)
        return events

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        all_events_data = self.storage.load_all(self.table_name)
        if not all_events_data:
            return result

        events = [AuditEvent.from_dict(data) for data in all_events_data]
        events.sort(key=lambda x: x.sequence)
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def get_event_by_id(self, event_id: str) -> Optional[AuditEvent]:
        """Get a specific audit event by ID"""
        event_data = self.storage.load(self.table_name, event_id)
        if event_data:
            return AuditEvent.from_dict(event_data)
        return None

    def count_events(self) -> int:
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
