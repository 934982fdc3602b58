"""
Pocketbook - Personal Finance Core

The derived-computation engine of a personal finance tracker: a cash
balance, categorized transactions, savings pots, category budgets and
recurring bills, kept mutually consistent under concurrent requests.

DESIGN PRINCIPLES:
1. Only the transfer engine moves money, and always atomically
2. Fail early, fail visibly: rejected changes leave state untouched
3. Money is exact (Decimal cents), never binary floats
4. Every movement of money is auditable
5. Storage layer is swappable (memory or SQL)
"""

__version__ = "1.0.0"
__author__ = "Pocketbook Team"
