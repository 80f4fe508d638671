"""
Expense Capture - Source Package

Client core for capturing household expenses by voice, free text or
banking notifications, with an offline queue that gets every capture to
the backend eventually.

DESIGN PRINCIPLES:
1. Capture never blocks on the network
2. Nothing captured is silently lost
3. Parsers guess, the user corrects
4. Every step must be auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Capture Team"
