"""
ACID Ledger

A small banking ledger that shows how concurrency-control strategies and
isolation levels change what concurrent transfers and readers observe.
All balances use Decimal precision.
"""

__version__ = "1.0.0"
