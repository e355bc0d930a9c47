# sharegate API
from sharegate.api.router import api_router

__all__ = ["api_router"]
