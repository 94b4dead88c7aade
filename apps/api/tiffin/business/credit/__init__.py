from tiffin.business.credit.api import router
from tiffin.business.credit.models import CreditUsage, CustomerCredit
from tiffin.business.credit.schemas import CreditAuditRead, CreditSummaryRead, CreditUsageRead, CustomerCreditRead
from tiffin.business.credit.service import CreditService, credit_service

__all__ = [
    "router",
    "CreditUsage",
    "CustomerCredit",
    "CreditAuditRead",
    "CreditSummaryRead",
    "CreditUsageRead",
    "CustomerCreditRead",
    "CreditService",
    "credit_service",
]
