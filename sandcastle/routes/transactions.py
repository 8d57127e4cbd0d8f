from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from sandcastle.core.auth_dependencies import get_current_user
from sandcastle.core.database import get_db
from sandcastle.models.user import User
from sandcastle.schemas.transaction import TransactionListResponse
from sandcastle.services.transaction_store import TransactionStore

transaction_router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


@transaction_router.get("/", response_model=TransactionListResponse)
def read_transactions(
    category_id: Optional[int] = Query(None, description="Only transactions in this category"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Number of records to return"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = TransactionStore(db).list_for_user(current_user.id, category_id=category_id, skip=skip, limit=limit)
    return {"transactions": items, "total": total}
