from tiffin.models.audit import LedgerAuditEntry

__all__ = ["LedgerAuditEntry"]
