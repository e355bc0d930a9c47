# sharegate Models
from sharegate.models.access_grant import AccessGrant
from sharegate.models.base import BaseModel
from sharegate.models.recipient import Recipient, RecipientToken
from sharegate.models.share import Share, SharedTable, ShareSchema
from sharegate.models.system_config import SystemConfig

__all__ = [
    "AccessGrant",
    "BaseModel",
    "Recipient",
    "RecipientToken",
    "Share",
    "ShareSchema",
    "SharedTable",
    "SystemConfig",
]
