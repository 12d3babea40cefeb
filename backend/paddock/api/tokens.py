"""Token API routes"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from paddock.core.security import require_admin_token
from paddock.db.session import get_db
from paddock.schemas.reconciliation import TokenBalanceResponse
from paddock.services.token_service import get_token_balance

router = APIRouter(prefix="/api/tokens", tags=["tokens"])


@router.get("/{user_id}", response_model=TokenBalanceResponse)
def get_balance(user_id: str, _auth=Depends(require_admin_token), db: Session = Depends(get_db)):
    """Get a user's current token balance"""
    balance = get_token_balance(user_id, db)
    if not balance:
        raise HTTPException(404, "No token balance for user")
    return balance
