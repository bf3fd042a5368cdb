"""Chart of Accounts routes."""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.database import get_db
from ipsas_ledger.middleware.auth import MAINTAINERS, get_current_user, require_role
from ipsas_ledger.models.enums import AccountType
from ipsas_ledger.models.gl import Account
from ipsas_ledger.schemas import AccountCreate, AccountUpdate
from ipsas_ledger.services.audit_service import AuditWriter, get_audit_writer
from ipsas_ledger.services.chart_of_accounts import AccountNode, ChartOfAccountsService
from ipsas_ledger.services.pagination import PageParams

router = APIRouter(prefix="/api/coa", tags=["chart-of-accounts"])


def get_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> ChartOfAccountsService:
    return ChartOfAccountsService(db, audit)


def account_to_dict(a: Account) -> dict[str, Any]:
    return {
        "id": str(a.id),
        "code": a.code,
        "name": a.name,
        "account_type": a.account_type,
        "normal_balance": a.normal_balance,
        "parent_account_id": str(a.parent_account_id) if a.parent_account_id else None,
        "fund_id": str(a.fund_id),
        "entity_id": str(a.entity_id),
        "level": a.level,
        "is_detail_account": a.is_detail_account,
        "budget_account": a.budget_account,
        "requires_fund_accounting": a.requires_fund_accounting,
        "description": a.description,
        "is_active": a.is_active,
        "created_at": a.created_at.isoformat() if a.created_at else None,
    }


def node_to_dict(node: AccountNode) -> dict[str, Any]:
    item = account_to_dict(node.account)
    item["level"] = node.level
    item["children"] = [node_to_dict(child) for child in node.children]
    return item


# ---------------------------------------------------------------------------
# ACCOUNTS
# ---------------------------------------------------------------------------

@router.post("/accounts", status_code=201)
async def create_account(
    body: AccountCreate,
    service: ChartOfAccountsService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    return account_to_dict(await service.create_account(body, actor=user["user_id"]))


@router.get("/accounts/{account_id}")
async def get_account(
    account_id: uuid.UUID,
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    return account_to_dict(await service.get_account(account_id))


@router.put("/accounts/{account_id}")
async def update_account(
    account_id: uuid.UUID,
    body: AccountUpdate,
    service: ChartOfAccountsService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    return account_to_dict(await service.update_account(account_id, body, actor=user["user_id"]))


@router.delete("/accounts/{account_id}")
async def deactivate_account(
    account_id: uuid.UUID,
    service: ChartOfAccountsService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    return account_to_dict(await service.deactivate_account(account_id, actor=user["user_id"]))


# ---------------------------------------------------------------------------
# LISTINGS (scoped to one fund of one entity)
# ---------------------------------------------------------------------------

@router.get("/{entity_id}/{fund_id}/accounts")
async def list_accounts(
    entity_id: uuid.UUID,
    fund_id: uuid.UUID,
    page: int | None = Query(None),
    limit: int | None = Query(None),
    sort_by: str | None = Query(None),
    sort_order: str | None = Query(None),
    include_inactive: bool = Query(False),
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    params = PageParams.normalize(page, limit, sort_by, sort_order)
    result = await service.list_accounts(entity_id, fund_id, params, include_inactive)
    return result.to_dict(account_to_dict)


@router.get("/{entity_id}/{fund_id}/hierarchy")
async def get_account_hierarchy(
    entity_id: uuid.UUID,
    fund_id: uuid.UUID,
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    roots = await service.get_account_hierarchy(entity_id, fund_id)
    return {"items": [node_to_dict(node) for node in roots]}


@router.get("/{entity_id}/{fund_id}/type/{account_type}")
async def get_accounts_by_type(
    entity_id: uuid.UUID,
    fund_id: uuid.UUID,
    account_type: AccountType,
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    accounts = await service.get_accounts_by_type(entity_id, fund_id, account_type)
    items = [account_to_dict(a) for a in accounts]
    return {"items": items, "total": len(items)}


@router.get("/{entity_id}/{fund_id}/detail")
async def get_detail_accounts(
    entity_id: uuid.UUID,
    fund_id: uuid.UUID,
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    accounts = await service.get_detail_accounts(entity_id, fund_id)
    items = [account_to_dict(a) for a in accounts]
    return {"items": items, "total": len(items)}


@router.get("/{entity_id}/{fund_id}/search")
async def search_accounts(
    entity_id: uuid.UUID,
    fund_id: uuid.UUID,
    q: str = Query(""),
    service: ChartOfAccountsService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    accounts = await service.search_accounts(entity_id, fund_id, q)
    items = [account_to_dict(a) for a in accounts]
    return {"items": items, "total": len(items)}
