# Ledger module
from coopfund.modules.ledger.models import LedgerEntry, LedgerEntryType
from coopfund.modules.ledger.services import LedgerService

__all__ = ["LedgerEntry", "LedgerEntryType", "LedgerService"]
