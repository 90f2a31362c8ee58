from offramp.routes.session import router as session_router
from offramp.routes.quote import router as quote_router
from offramp.routes.kyc import router as kyc_router
from offramp.routes.transaction import router as transaction_router
from offramp.routes.webhook import router as webhook_router
from offramp.routes.admin import router as admin_router

__all__ = ["session_router", "quote_router", "kyc_router", "transaction_router", "webhook_router", "admin_router"]
