"""
bankdash — session and ledger-state client for a banking dashboard.

Authenticates a user, caches their accounts, submits deposits, withdrawals
and transfers, and keeps the cached view in step with the server.
"""

__version__ = "0.1.0"
