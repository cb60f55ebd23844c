"""
FinOps Dashboard API

Multi-tenant FinOps backend: tenant isolation, RBAC, budgets, policies,
cloud accounts, unit economics, reports and in-app chat.
"""

__version__ = "1.0.0"
