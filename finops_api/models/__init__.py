"""
Database Models

Every tenant-owned model carries tenant_id with ON DELETE CASCADE.
Queries in the API layer always filter on it.
"""
from finops_api.models.tenant import Tenant
from finops_api.models.user import User
from finops_api.models.cloud_account import CloudAccount
from finops_api.models.budget import Budget
from finops_api.models.unit_metric import UnitMetric
from finops_api.models.policy import Policy
from finops_api.models.integration import Integration
from finops_api.models.report import Report, ReportSchedule
from finops_api.models.cost import CostRecord
from finops_api.models.recommendation import Recommendation
from finops_api.models.chat import Conversation, Message, Reaction, MessageRead

__all__ = [
    "Tenant", "User", "CloudAccount", "Budget", "UnitMetric", "Policy",
    "Integration", "Report", "ReportSchedule", "CostRecord", "Recommendation",
    "Conversation", "Message", "Reaction", "MessageRead",
]
