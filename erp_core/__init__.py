"""
ERP Core

Back-office core for an electrical-contracting business: financial
obligations with amortization schedules, supplier payables, a directory of
code-bearing master records, quotes and invoices, and rule-based alerts.
All financial math uses Decimal and every change lands in a hash-chained
audit trail.
"""

__version__ = "1.0.0"
