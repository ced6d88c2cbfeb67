"""
Account Router
==============

- POST /api/accounts                 create an account (optional opening balance)
- GET  /api/accounts/{id}            balance
- POST /api/accounts/{id}/credits    admin top-up: credits and matching hits

Payment capture happens upstream; a top-up here records credits already paid for.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from trafficledger.core.admin_auth import require_admin
from trafficledger.models import Account
from trafficledger.services import accounts as account_service

logger = logging.getLogger(__name__)


class CreateAccountRequest(BaseModel):
    id: Optional[str] = Field(default=None, max_length=64, description="Caller-supplied id")
    email: str = Field(default="", max_length=255)
    credits: int = Field(default=0, ge=0)


class TopUpRequest(BaseModel):
    credits: int = Field(..., gt=0)


class AccountResponse(BaseModel):
    id: str
    email: str
    credits: int
    available_hits: int
    version: int
    created_at: datetime
    updated_at: datetime


def _to_response(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        email=account.email,
        credits=account.credits,
        available_hits=account.available_hits,
        version=account.version,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


router = APIRouter()


@router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
async def create_account(body: CreateAccountRequest):
    account = account_service.create_account(
        email=body.email, credits=body.credits, account_id=body.id,
    )
    return _to_response(account)


@router.get("/{account_id}", response_model=AccountResponse)
async def get_account(account_id: str):
    return _to_response(account_service.get_account(account_id))


@router.post(
    "/{account_id}/credits",
    response_model=AccountResponse,
    dependencies=[Depends(require_admin)],
)
async def top_up_account(account_id: str, body: TopUpRequest):
    return _to_response(account_service.top_up(account_id, body.credits))
