from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from coopfund.core.database import get_db
from coopfund.core.dependencies import get_current_user_id
from coopfund.modules.ledger import schemas
from coopfund.modules.ledger.models import LedgerEntryType
from coopfund.modules.ledger.services import LedgerService

router = APIRouter(prefix="/api/v1", tags=["ledger"])


@router.get("/cooperatives/{cooperative_id}/ledger", response_model=List[schemas.LedgerEntryResponse])
async def list_ledger_entries(
    cooperative_id: int,
    member_id: Optional[int] = Query(None, description="Filter by member"),
    entry_type: Optional[LedgerEntryType] = Query(None, alias="type", description="Filter by entry type"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    List ledger entries, newest first.

    - Requires ledger:view to see other members' entries
    """
    return await LedgerService.list_entries(db, cooperative_id, user_id, member_id, entry_type, skip, limit)
