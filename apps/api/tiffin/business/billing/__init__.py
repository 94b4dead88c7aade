from tiffin.business.billing.api import router
from tiffin.business.billing.models import MonthlyBilling, OrderBilling
from tiffin.business.billing.schemas import (
    BillingActionRequest,
    BillingAuditRead,
    BusinessProfileRead,
    MonthlyBillingRead,
    OrderBillingRead,
    ReopenBillingRequest,
)
from tiffin.business.billing.service import BillingService, billing_service

__all__ = [
    "router",
    "MonthlyBilling",
    "OrderBilling",
    "BillingActionRequest",
    "BillingAuditRead",
    "BusinessProfileRead",
    "MonthlyBillingRead",
    "OrderBillingRead",
    "ReopenBillingRequest",
    "BillingService",
    "billing_service",
]
