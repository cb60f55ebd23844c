"""
Cloud Account Model

A connected AWS / Azure / GCP billing account. Credentials are stored as
JSON and never leave the API in a response.
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from finops_api.database import Base
import enum
import uuid


class CloudProvider(str, enum.Enum):
    AWS = "AWS"
    AZURE = "AZURE"
    GCP = "GCP"


class CloudAccountStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    DISABLED = "DISABLED"


# Any one of these key sets is enough to reach the provider's billing API
REQUIRED_CREDENTIAL_KEYS = {
    CloudProvider.AWS: [("role_arn",), ("access_key_id", "secret_access_key")],
    CloudProvider.AZURE: [("tenant_id", "client_id", "client_secret")],
    CloudProvider.GCP: [("service_account_json",), ("project_id",)],
}


def check_credentials(provider: CloudProvider, credentials: dict):
    """
    Validate the credential shape for a provider.

    Returns (ok, message).
    """
    credentials = credentials or {}
    options = REQUIRED_CREDENTIAL_KEYS[CloudProvider(provider)]
    for keys in options:
        if all(credentials.get(k) for k in keys):
            return True, "Credentials look valid"
    expected = " or ".join("+".join(keys) for keys in options)
    return False, f"{CloudProvider(provider).value} credentials require {expected}"


class CloudAccount(Base):
    __tablename__ = "cloud_accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    provider = Column(SQLEnum(CloudProvider), nullable=False)
    account_id = Column(String(255), nullable=False)
    account_name = Column(String(255), nullable=False)

    credentials = Column(JSON, nullable=False, default=dict)
    regions = Column(JSON, nullable=False, default=list)
    services = Column(JSON, nullable=False, default=list)

    status = Column(SQLEnum(CloudAccountStatus), default=CloudAccountStatus.PENDING, nullable=False, index=True)
    last_sync_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", back_populates="cloud_accounts")

    __table_args__ = (
        UniqueConstraint('tenant_id', 'provider', 'account_id', name='uq_cloud_account_tenant_provider_account'),
    )

    def __repr__(self):
        return f"<CloudAccount {self.provider}:{self.account_id} (tenant={self.tenant_id})>"
