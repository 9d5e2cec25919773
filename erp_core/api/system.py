"""
ERP system wiring and request dependencies
"""

from decimal import Decimal
from typing import Optional

from fastapi import HTTPException

from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface, RecordNotFoundError
from ..audit import AuditTrail, AuditEventType
from ..codes import CodeAllocator, CodeConflictError
from ..currency import Currency
from ..obligations import ObligationManager
from ..payables import PayableManager
from ..directory import DirectoryManager
from ..invoicing import InvoicingManager
from ..alerts import AlertEngine
from ..config import ErpConfig, get_config
from ..logging_config import get_logger, log_action


class ErpSystem:
    """ERP core with all components initialized"""

    def __init__(
        self,
        use_sqlite: Optional[bool] = None,
        storage: Optional[StorageInterface] = None,
        config: Optional[ErpConfig] = None
    ):
        self.config = config or get_config()
        use_sqlite = self.config.use_sqlite if use_sqlite is None else use_sqlite

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.code_allocator = CodeAllocator(
            self.storage, self.audit_trail,
            max_attempts=self.config.code_allocation_attempts
        )

        # Initialize business modules
        self.obligation_manager = ObligationManager(
            self.storage, self.audit_trail,
            max_periods=self.config.amortization_max_periods,
            balance_cutoff=Decimal(self.config.amortization_balance_cutoff)
        )
        self.payable_manager = PayableManager(
            self.storage, self.audit_trail,
            default_credit_days=self.config.payables_default_credit_days
        )
        self.directory_manager = DirectoryManager(self.storage, self.audit_trail, self.code_allocator)
        self.invoicing_manager = InvoicingManager(
            self.storage, self.audit_trail, self.code_allocator,
            vat_rate=Decimal(self.config.invoice_vat_rate),
            currency=Currency[self.config.default_currency]
        )
        self.alert_engine = AlertEngine()

        self.audit_trail.log_event(
            event_type=AuditEventType.SYSTEM_START,
            entity_type="system",
            entity_id="erp_core",
            metadata={"storage": type(self.storage).__name__}
        )
        log_action(
            get_logger("erp.system"), "info", "ERP system initialized",
            action="system_start", extra={"storage": type(self.storage).__name__}
        )


# Created on first request so importing the API never touches the database
_erp_system: Optional[ErpSystem] = None


def get_erp_system() -> ErpSystem:
    """Dependency returning the process-wide ERP system"""
    global _erp_system
    if _erp_system is None:
        _erp_system = ErpSystem()
    return _erp_system


def http_error(error: ValueError) -> HTTPException:
    """Map a business error to the matching HTTP error"""
    if isinstance(error, CodeConflictError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, RecordNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
