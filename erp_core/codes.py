"""
Sequential Code Module

Human-readable record codes such as CLI-008, INV-0042 or FAC-2024-0048.

next_code() derives the following code from the highest stored one. The
CodeAllocator wraps the read-then-insert sequence so two concurrent creations
cannot both persist the same code: the code column is inserted under a
uniqueness constraint and a generated code that loses the race is simply
recomputed and retried.
"""

from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .storage import StorageInterface, UniqueConstraintError
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action, resource_ref


class CodeConflictError(ValueError):
    """The code is already in use; the caller may retry the creation"""

    def __init__(self, code: str, sequence: 'CodeSequence', attempts: int):
        self.code = code
        self.sequence = sequence
        self.attempts = attempts
        super().__init__(
            f"Code {code} is already in use for {sequence.table}, please retry"
        )


class CodeSequence(Enum):
    """Code sequences: (prefix template, zero-pad width, table, code column)"""
    CLIENT = ("CLI-", 3, "clients", "code")
    WORK_CODE = ("COD-", 3, "work_codes", "code")
    SUPPLIER = ("PROV-", 3, "suppliers", "code")
    INVENTORY = ("INV-", 4, "inventory_items", "sku")
    EMPLOYEE = ("EMP-", 3, "employees", "code")
    INVOICE = ("FAC-{year}-", 4, "invoices", "number")
    QUOTE = ("COT-{year}-", 4, "quotes", "number")

    def __init__(self, prefix_template: str, width: int, table: str, field: str):
        self.prefix_template = prefix_template
        self.width = width
        self.table = table
        self.field = field

    @property
    def is_yearly(self) -> bool:
        return "{year}" in self.prefix_template

    def prefix_for(self, year: Optional[int] = None) -> str:
        """Concrete prefix; yearly sequences default to the current year"""
        if not self.is_yearly:
            return self.prefix_template
        return self.prefix_template.format(year=year or date.today().year)


def next_code(existing_max_code: Optional[str], prefix: str, width: int) -> str:
    """
    Next code after the highest existing one

    Args:
        existing_max_code: Highest stored code matching the prefix, if any
        prefix: Code prefix including its trailing delimiter, e.g. "CLI-"
        width: Zero-pad width of the numeric part

    Returns:
        prefix + zero-padded number. A missing code starts the sequence at 1;
        so does a code whose suffix is not a plain number.
    """
    next_number = 1

    if existing_max_code and existing_max_code.lower().startswith(prefix.lower()):
        suffix = existing_max_code[len(prefix):]
        if suffix.isascii() and suffix.isdigit():
            next_number = int(suffix) + 1

    return f"{prefix}{str(next_number).zfill(width)}"


def check_explicit_code(code: str, prefix: str) -> None:
    """
    Reject a caller code that would corrupt the sequence

    A code carrying the sequence prefix must end in a plain number, otherwise
    it sorts above every generated code and next_code() restarts at 1.
    """
    if code.lower().startswith(prefix.lower()):
        suffix = code[len(prefix):]
        if not (suffix.isascii() and suffix.isdigit()):
            raise ValueError(f"Code {code} must end in a number after {prefix}")


class CodeAllocator:
    """
    Allocates sequential codes and inserts the owning record atomically
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        max_attempts: int = 3
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.storage = storage
        self.audit_trail = audit_trail
        self.max_attempts = max_attempts
        self.logger = get_logger("erp.codes")

    def peek_next(self, sequence: CodeSequence, year: Optional[int] = None) -> str:
        """Preview the next code without reserving it"""
        prefix = sequence.prefix_for(year)
        existing = self.storage.find_max_by_prefix(sequence.table, sequence.field, prefix)
        return next_code(existing, prefix, sequence.width)

    def allocate_and_insert(
        self,
        sequence: CodeSequence,
        build_record: Callable[[str], Dict[str, Any]],
        explicit_code: Optional[str] = None,
        year: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Allocate a code and insert the record that carries it

        Args:
            sequence: Code sequence of the record
            build_record: Builds the storage dict (with an 'id' key) for a code
            explicit_code: Code chosen by the caller; never regenerated
            year: Year for yearly sequences

        Returns:
            The inserted record dict

        Raises:
            ValueError: The explicit code has the sequence prefix but no
                numeric suffix
            CodeConflictError: The explicit code is taken, or every attempt
                with a generated code lost a race
        """
        prefix = sequence.prefix_for(year)
        if explicit_code is not None:
            explicit_code = explicit_code.strip()
            if not explicit_code:
                explicit_code = None
            else:
                check_explicit_code(explicit_code, prefix)

        attempt = 0
        while True:
            attempt += 1
            code = explicit_code or self.peek_next(sequence, year)
            if explicit_code is None and len(code) > len(prefix) + sequence.width:
                # Stored codes sort as text, so the wider code is never the max
                log_action(
                    self.logger, "warning",
                    f"Code {code} is wider than {sequence.width} digits; {sequence.name} allocation will stall",
                    action="allocate_code", resource=resource_ref(sequence.table),
                    extra={"code": code, "sequence": sequence.name, "width": sequence.width}
                )
            try:
                with self.storage.atomic():
                    data = build_record(code)
                    data[sequence.field] = code
                    self.storage.insert(
                        sequence.table, data['id'], data,
                        unique_fields=(sequence.field,)
                    )
            except UniqueConstraintError as e:
                if e.field != sequence.field:
                    raise
                self._record_conflict(sequence, code, attempt, explicit_code is not None)
                if explicit_code is not None or attempt >= self.max_attempts:
                    raise CodeConflictError(code, sequence, attempt) from e
                continue

            log_action(
                self.logger, "info", f"Code allocated: {code}",
                action="allocate_code", resource=resource_ref(sequence.table, data['id']),
                extra={"code": code, "sequence": sequence.name, "attempt": attempt}
            )
            return data

    def _record_conflict(self, sequence: CodeSequence, code: str, attempt: int, explicit: bool) -> None:
        log_action(
            self.logger, "warning", f"Code already in use: {code}",
            action="allocate_code", resource=resource_ref(sequence.table),
            extra={"code": code, "sequence": sequence.name, "attempt": attempt, "explicit": explicit}
        )
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.CODE_CONFLICT,
                entity_type=sequence.table,
                entity_id=code,
                metadata={"sequence": sequence.name, "attempt": attempt, "explicit": explicit}
            )
