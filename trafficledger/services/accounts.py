"""
Account balances: creation, lookup and top-ups.

Top-ups add ``credits`` and ``credits // credits_per_hit`` hits in one
conditional UPDATE. Campaigns auto-paused for insolvency are not resumed
here; the owner resumes them explicitly once the balance is positive.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from trafficledger.config import settings
from trafficledger.core.database import get_session_context, run_in_transaction
from trafficledger.core.errors import AccountAlreadyExists, AccountNotFound, InvalidAmount
from trafficledger.models import Account
from trafficledger.services.ledger import credit_account, load_account

logger = logging.getLogger(__name__)


def hits_for_credits(credits: int) -> int:
    if settings.credits_per_hit <= 0:
        return 0
    return credits // settings.credits_per_hit


def create_account(email: str = "", credits: int = 0, account_id: Optional[str] = None) -> Account:
    if credits < 0:
        raise InvalidAmount(detail="opening balance cannot be negative", context={"credits": credits})
    account = Account(email=email, credits=credits, available_hits=hits_for_credits(credits))
    if account_id:
        account.id = account_id
    with get_session_context() as session:
        session.add(account)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise AccountAlreadyExists(account_id or "")
        session.refresh(account)
    logger.info("Account created: account=%s credits=%d", account.id, account.credits)
    return account


def get_account(account_id: str) -> Account:
    return load_account(account_id)


def top_up(account_id: str, credits: int) -> Account:
    """Add credits (and the matching hit allowance) to an account."""
    if credits <= 0:
        raise InvalidAmount(detail="top-up must be positive", context={"credits": credits})
    hits = hits_for_credits(credits)
    if not run_in_transaction(lambda conn: credit_account(conn, account_id, credits=credits, hits=hits)):
        raise AccountNotFound(account_id)
    logger.info("Account topped up: account=%s credits=+%d hits=+%d", account_id, credits, hits)
    return load_account(account_id)
