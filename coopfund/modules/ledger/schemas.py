from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from coopfund.modules.ledger.models import LedgerEntryType


class LedgerEntryResponse(BaseModel):
    id: int
    cooperative_id: int
    member_id: Optional[int] = None
    type: LedgerEntryType
    amount: float
    balance_after: float
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    description: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True
