"""
Vault Ledger - Source Package

A personal-finance ledger: expenses, income, multi-account balances,
budgets, recurring obligations and category rules, with every derived
figure (net worth, utilization, runway, projections) computed from them.

DESIGN PRINCIPLES:
1. One writer: every mutation is a command processed by the dispatcher
2. Balances move only through the balance mutator
3. Derived numbers are computed, never stored
4. Collaborators (AI, cloud) are optional and never block the ledger
5. Storage and transport are swappable
"""

__version__ = "1.0.0"
__author__ = "Vault Ledger Team"
