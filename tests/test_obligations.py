"""
Tests for financial obligations
"""

import pytest
from decimal import Decimal
from datetime import date

from erp_core.storage import InMemoryStorage, RecordNotFoundError
from erp_core.audit import AuditTrail, AuditEventType
from erp_core.amortization import InstallmentPolicy, reference_installment
from erp_core.obligations import (
    ObligationManager, ObligationKind, ObligationState, RateBasis
)


class TestObligationManager:
    """Test obligation lifecycle"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = ObligationManager(self.storage, self.audit_trail)

    def _create(self, **overrides):
        values = dict(
            lender="Bancolombia",
            principal=Decimal('1000000'),
            interest_rate=Decimal('0.02'),
            term_months=12,
            start_date=date(2024, 1, 15)
        )
        values.update(overrides)
        return self.manager.create_obligation(**values)

    def test_create_obligation(self):
        """Test obligation creation with default installment"""
        obligation = self._create()

        assert obligation.lender == "Bancolombia"
        assert obligation.outstanding_balance == Decimal('1000000')
        assert obligation.installment == Decimal('94559.60')
        assert obligation.state == ObligationState.ACTIVE
        assert obligation.kind == ObligationKind.LOAN
        assert obligation.installments_paid == 0

        events = self.audit_trail.get_events_for_entity("obligation", obligation.id)
        assert events[0].event_type == AuditEventType.OBLIGATION_CREATED

    def test_create_with_agreed_installment(self):
        """Test an explicit installment is kept"""
        obligation = self._create(installment=Decimal('100000'), kind=ObligationKind.LEASING)

        assert obligation.installment == Decimal('100000')
        assert obligation.kind == ObligationKind.LEASING

    def test_effective_annual_rate(self):
        """Test E.A. rates are converted to a monthly rate"""
        obligation = self._create(interest_rate=Decimal('0.12'), rate_basis=RateBasis.EFFECTIVE_ANNUAL)

        assert abs(obligation.periodic_rate - Decimal('0.0094888')) < Decimal('0.0000001')

    @pytest.mark.parametrize("overrides", [
        {"principal": Decimal('0')},
        {"principal": Decimal('-5')},
        {"term_months": 0},
        {"interest_rate": Decimal('-0.01')},
        {"lender": "  "},
    ])
    def test_create_validation(self, overrides):
        """Test invalid terms are rejected"""
        with pytest.raises(ValueError):
            self._create(**overrides)

    def test_get_and_list(self):
        """Test retrieval round-trips through storage"""
        first = self._create(lender="Banco A")
        second = self._create(lender="Banco B")

        loaded = self.manager.get_obligation(first.id)
        assert loaded.lender == "Banco A"
        assert loaded.principal == Decimal('1000000')
        assert loaded.start_date == date(2024, 1, 15)
        assert self.manager.get_obligation("missing") is None
        assert {o.id for o in self.manager.list_obligations()} == {first.id, second.id}

    def test_update_obligation(self):
        """Test field updates and balance corrections"""
        obligation = self._create()

        updated = self.manager.update_obligation(
            obligation.id, notes="Refinanced", outstanding_balance=Decimal('800000')
        )

        assert updated.notes == "Refinanced"
        assert self.manager.get_obligation(obligation.id).outstanding_balance == Decimal('800000')

    def test_update_rejects_unknown_and_negative(self):
        """Test update validation"""
        obligation = self._create()

        with pytest.raises(ValueError):
            self.manager.update_obligation(obligation.id, installments_paid=5)
        with pytest.raises(ValueError):
            self.manager.update_obligation(obligation.id, outstanding_balance=Decimal('-1'))
        with pytest.raises(RecordNotFoundError):
            self.manager.update_obligation("missing", notes="x")

    def test_register_payment(self):
        """Test payment split between interest and principal"""
        obligation = self._create()

        payment = self.manager.register_payment(
            obligation.id, Decimal('94559.60'), payment_date=date(2024, 2, 15)
        )

        assert payment.interest == Decimal('20000.00')
        assert payment.principal == Decimal('74559.60')
        assert payment.balance_after == Decimal('925440.40')

        reloaded = self.manager.get_obligation(obligation.id)
        assert reloaded.outstanding_balance == Decimal('925440.40')
        assert reloaded.installments_paid == 1
        assert reloaded.state == ObligationState.ACTIVE

    def test_payment_paying_off_obligation(self):
        """Test overpayment clamps the balance at zero and closes the loan"""
        obligation = self._create()

        payment = self.manager.register_payment(obligation.id, Decimal('2000000'), date(2024, 2, 15))

        assert payment.balance_after == Decimal('0')
        assert self.manager.get_obligation(obligation.id).state == ObligationState.PAID_OFF
        assert len(self.audit_trail.get_events_by_type(AuditEventType.OBLIGATION_PAID_OFF)) == 1

        with pytest.raises(ValueError):
            self.manager.register_payment(obligation.id, Decimal('10'))

    def test_payment_validation(self):
        """Test invalid payments are rejected"""
        obligation = self._create()

        with pytest.raises(ValueError):
            self.manager.register_payment(obligation.id, Decimal('0'))
        with pytest.raises(RecordNotFoundError):
            self.manager.register_payment("missing", Decimal('100'))

    def test_payments_sorted_by_date(self):
        """Test payment history is oldest first"""
        obligation = self._create()
        self.manager.register_payment(obligation.id, Decimal('100000'), date(2024, 3, 15))
        self.manager.register_payment(obligation.id, Decimal('100000'), date(2024, 2, 15))

        dates = [p.payment_date for p in self.manager.get_payments(obligation.id)]
        assert dates == [date(2024, 2, 15), date(2024, 3, 15)]

    def test_schedule_without_payments(self):
        """Test the schedule of a fresh obligation is fully projected"""
        obligation = self._create()

        rows = self.manager.get_schedule(obligation.id)

        assert len(rows) == 12
        assert not any(row.is_actual for row in rows)
        assert rows[0].interest == Decimal('20000')
        assert rows[-1].balance == Decimal('0')

    def test_schedule_replays_payments(self):
        """Test recorded payments appear as actual rows"""
        obligation = self._create()
        payment = self.manager.register_payment(obligation.id, Decimal('94559.60'), date(2024, 2, 15))

        rows = self.manager.get_schedule(obligation.id)

        assert rows[0].is_actual
        assert rows[0].balance == payment.balance_after
        assert rows[1].date == date(2024, 3, 15)
        assert rows[-1].balance == Decimal('0')

    def test_schedule_summary(self):
        """Test summary totals for the schedule"""
        obligation = self._create()
        self.manager.register_payment(obligation.id, Decimal('94559.60'), date(2024, 2, 15))

        summary = self.manager.get_schedule_summary(obligation.id, InstallmentPolicy.REMAINING_TERM)

        assert summary.actual_periods == 1
        assert summary.projected_periods == 11
        assert summary.is_truncated is False
        assert summary.payoff_date == date(2025, 1, 15)

    def test_summary_installment_follows_policy(self):
        """Test the reported installment is the one the projected rows use"""
        obligation = self._create()
        self.manager.register_payment(obligation.id, Decimal('200000'), date(2024, 2, 15))

        original = self.manager.get_schedule_summary(obligation.id)
        remaining = self.manager.get_schedule_summary(obligation.id, InstallmentPolicy.REMAINING_TERM)

        assert original.reference_installment == reference_installment(
            Decimal('1000000'), Decimal('0.02'), 12
        )
        assert original.rows[1].installment == original.reference_installment
        # 1,000,000 - (200,000 - 20,000 interest) leaves 820,000 over 11 periods
        assert remaining.reference_installment == reference_installment(
            Decimal('820000.00'), Decimal('0.02'), 11
        )
        assert remaining.rows[1].installment == remaining.reference_installment
        assert remaining.reference_installment < original.reference_installment

    def test_schedule_missing_obligation(self):
        """Test schedules need an existing obligation"""
        with pytest.raises(RecordNotFoundError):
            self.manager.get_schedule("missing")

    def test_delete_cascades_payments(self):
        """Test deleting an obligation removes its payments"""
        obligation = self._create()
        self.manager.register_payment(obligation.id, Decimal('100000'), date(2024, 2, 15))

        assert self.manager.delete_obligation(obligation.id) is True
        assert self.manager.get_obligation(obligation.id) is None
        assert self.manager.get_payments(obligation.id) == []
        assert self.manager.delete_obligation(obligation.id) is False

    def test_legacy_record_without_balance(self):
        """Test stored obligations missing a balance still owe the principal"""
        obligation = self._create()
        data = self.storage.load("obligations", obligation.id)
        del data["outstanding_balance"]
        self.storage.save("obligations", obligation.id, data)

        assert self.manager.get_obligation(obligation.id).outstanding_balance == Decimal('1000000')
