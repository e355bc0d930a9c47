# sharegate Services
from sharegate.services.access_grant import AccessGrantService, GrantAction
from sharegate.services.delta_client import DeltaSharingClient
from sharegate.services.proxy import ProtocolProxy, TableRef
from sharegate.services.recipient import RecipientService
from sharegate.services.service_account import ServiceAccountManager, get_service_account_manager
from sharegate.services.token import TokenService

__all__ = [
    "AccessGrantService",
    "DeltaSharingClient",
    "GrantAction",
    "ProtocolProxy",
    "RecipientService",
    "ServiceAccountManager",
    "TableRef",
    "TokenService",
    "get_service_account_manager",
]
