"""
Data Source Catalog

External systems a tenant can connect for business data (revenue,
customers, orders) used by unit economics. Static; client credentials for
oauth2 sources come from INTEGRATION_OAUTH_CLIENTS.
"""
from typing import Dict, List, Optional

DATA_SOURCES: List[Dict[str, str]] = [
    {
        "id": "quickbooks",
        "name": "QuickBooks Online",
        "description": "Connect to QuickBooks accounting software",
        "category": "accounting",
        "auth_type": "oauth2",
        "authorization_url": "https://appcenter.intuit.com/connect/oauth2",
        "token_url": "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        "scope": "com.intuit.quickbooks.accounting",
    },
    {
        "id": "xero",
        "name": "Xero",
        "description": "Connect to Xero accounting software",
        "category": "accounting",
        "auth_type": "oauth2",
        "authorization_url": "https://login.xero.com/identity/connect/authorize",
        "token_url": "https://identity.xero.com/connect/token",
        "scope": "openid profile email accounting.transactions.read offline_access",
    },
    {
        "id": "xero_practice_manager",
        "name": "Xero Practice Manager",
        "description": "Connect to Xero Practice Manager",
        "category": "accounting",
        "auth_type": "oauth2",
        "authorization_url": "https://login.xero.com/identity/connect/authorize",
        "token_url": "https://identity.xero.com/connect/token",
        "scope": "openid profile email practicemanager offline_access",
    },
    {
        "id": "salesforce",
        "name": "Salesforce",
        "description": "Import customers and opportunities from Salesforce",
        "category": "crm",
        "auth_type": "oauth2",
        "authorization_url": "https://login.salesforce.com/services/oauth2/authorize",
        "token_url": "https://login.salesforce.com/services/oauth2/token",
        "scope": "api refresh_token",
    },
    {
        "id": "google_analytics",
        "name": "Google Analytics",
        "description": "Import traffic and conversion metrics",
        "category": "analytics",
        "auth_type": "oauth2",
        "authorization_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "scope": "https://www.googleapis.com/auth/analytics.readonly",
    },
    {
        "id": "shopify",
        "name": "Shopify",
        "description": "Import orders and revenue from a Shopify store",
        "category": "commerce",
        "auth_type": "api_key",
    },
]

_BY_ID = {source["id"]: source for source in DATA_SOURCES}


def get_data_source(source_id: str) -> Optional[Dict[str, str]]:
    return _BY_ID.get(source_id)
