from tiffin.business.payments.api import router
from tiffin.business.payments.models import PaymentAllocation, PaymentRecord
from tiffin.business.payments.schemas import (
    AllocatePaymentRequest,
    AllocationEntry,
    AllocationResult,
    AutoSelectRead,
    AutoSelection,
    DeletePaymentRequest,
    PaymentAllocationRead,
    PaymentCreate,
    PaymentRead,
)
from tiffin.business.payments.service import PaymentService, payment_service, plan_auto_allocation

__all__ = [
    "router",
    "PaymentAllocation",
    "PaymentRecord",
    "AllocatePaymentRequest",
    "AllocationEntry",
    "AllocationResult",
    "AutoSelectRead",
    "AutoSelection",
    "DeletePaymentRequest",
    "PaymentAllocationRead",
    "PaymentCreate",
    "PaymentRead",
    "PaymentService",
    "payment_service",
    "plan_auto_allocation",
]
