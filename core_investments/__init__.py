"""
Core Investments Engine

Fixed-term investment contracts: repayment plan resolution, schedule
generation, returns quoting and payment reconciliation, with proper
financial math using Decimal and hash-chained contract audit trails.
"""

__version__ = "1.0.0"
