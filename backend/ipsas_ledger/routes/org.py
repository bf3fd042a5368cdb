"""Organization routes -- Entities and Funds."""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.database import get_db
from ipsas_ledger.middleware.auth import ADMIN, MAINTAINERS, get_current_user, require_role
from ipsas_ledger.models.fund import Fund
from ipsas_ledger.models.org import Entity
from ipsas_ledger.schemas import EntityCreate, EntityUpdate, FundCreate
from ipsas_ledger.services.audit_service import AuditWriter, get_audit_writer
from ipsas_ledger.services.organization import OrganizationService

router = APIRouter(prefix="/api/org", tags=["organization"])


def get_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditWriter = Depends(get_audit_writer),
) -> OrganizationService:
    return OrganizationService(db, audit)


def entity_to_dict(e: Entity) -> dict[str, Any]:
    return {
        "id": str(e.id),
        "code": e.code,
        "name": e.name,
        "entity_type": e.entity_type,
        "parent_entity_id": str(e.parent_entity_id) if e.parent_entity_id else None,
        "fiscal_year_end": e.fiscal_year_end,
        "currency_code": e.currency_code,
        "description": e.description,
        "is_active": e.is_active,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


def fund_to_dict(f: Fund) -> dict[str, Any]:
    return {
        "id": str(f.id),
        "code": f.code,
        "name": f.name,
        "fund_type": f.fund_type,
        "entity_id": str(f.entity_id),
        "description": f.description,
        "budget_authority": str(f.budget_authority) if f.budget_authority is not None else None,
        "carry_forward_allowed": f.carry_forward_allowed,
        "is_active": f.is_active,
        "created_at": f.created_at.isoformat() if f.created_at else None,
    }


# ---------------------------------------------------------------------------
# ENTITIES
# ---------------------------------------------------------------------------

@router.get("/entities")
async def list_entities(
    is_active: bool | None = Query(True),
    service: OrganizationService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    entities = await service.list_entities(active=is_active)
    items = [entity_to_dict(e) for e in entities]
    return {"items": items, "total": len(items)}


@router.get("/entities/{entity_id}")
async def get_entity(
    entity_id: uuid.UUID,
    service: OrganizationService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    return entity_to_dict(await service.get_entity(entity_id))


@router.post("/entities", status_code=201)
async def create_entity(
    body: EntityCreate,
    service: OrganizationService = Depends(get_service),
    user: dict = Depends(require_role(ADMIN)),
):
    return entity_to_dict(await service.create_entity(body, actor=user["user_id"]))


@router.put("/entities/{entity_id}")
async def update_entity(
    entity_id: uuid.UUID,
    body: EntityUpdate,
    service: OrganizationService = Depends(get_service),
    user: dict = Depends(require_role(ADMIN)),
):
    return entity_to_dict(await service.update_entity(entity_id, body, actor=user["user_id"]))


@router.delete("/entities/{entity_id}")
async def deactivate_entity(
    entity_id: uuid.UUID,
    service: OrganizationService = Depends(get_service),
    user: dict = Depends(require_role(ADMIN)),
):
    return entity_to_dict(await service.deactivate_entity(entity_id, actor=user["user_id"]))


# ---------------------------------------------------------------------------
# FUNDS
# ---------------------------------------------------------------------------

@router.get("/entities/{entity_id}/funds")
async def list_funds(
    entity_id: uuid.UUID,
    is_active: bool | None = Query(True),
    service: OrganizationService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    funds = await service.list_funds(entity_id, active=is_active)
    items = [fund_to_dict(f) for f in funds]
    return {"items": items, "total": len(items)}


@router.post("/entities/{entity_id}/funds", status_code=201)
async def create_fund(
    entity_id: uuid.UUID,
    body: FundCreate,
    service: OrganizationService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    body = body.model_copy(update={"entity_id": entity_id})
    return fund_to_dict(await service.create_fund(body, actor=user["user_id"]))


@router.get("/funds/{fund_id}")
async def get_fund(
    fund_id: uuid.UUID,
    service: OrganizationService = Depends(get_service),
    _user: dict = Depends(get_current_user),
):
    return fund_to_dict(await service.get_fund(fund_id))


@router.delete("/funds/{fund_id}")
async def deactivate_fund(
    fund_id: uuid.UUID,
    service: OrganizationService = Depends(get_service),
    user: dict = Depends(require_role(*MAINTAINERS)),
):
    return fund_to_dict(await service.deactivate_fund(fund_id, actor=user["user_id"]))
