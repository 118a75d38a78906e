"""
Buzo Sync - Offline-First Sync Core

Keeps a personal finance app's expenses, budgets and savings goals
usable without a network connection and converges them with the hosted
backend once it is reachable.

DESIGN PRINCIPLES:
1. The local copy is always written first
2. Nothing is dropped: failed remote writes are queued, then dead-lettered
3. Replaying a queued mutation twice is harmless
4. Every queue transition is auditable
"""

__version__ = "1.0.0"
__author__ = "Buzo Team"
