"""
tickwork: a persistent, idempotent, budget-aware task scheduler for hosts that
run code in quanta and may cut a quantum off at any operation boundary.
"""

__version__ = "0.1.0"
