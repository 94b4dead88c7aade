from tiffin.business.refunds.api import router
from tiffin.business.refunds.models import RefundRequest
from tiffin.business.refunds.schemas import ApproveRefundRequest, CancelRefundRequest, RefundCreate, RefundRead
from tiffin.business.refunds.service import RefundService, refund_service

__all__ = [
    "router",
    "RefundRequest",
    "ApproveRefundRequest",
    "CancelRefundRequest",
    "RefundCreate",
    "RefundRead",
    "RefundService",
    "refund_service",
]
