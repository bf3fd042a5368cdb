"""Reporting entities and the funds they own."""
from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.config import settings
from ipsas_ledger.database import atomic, flush_or_raise
from ipsas_ledger.exceptions import (
    ConflictError,
    DuplicateKeyError,
    InvalidInputError,
    NotFoundError,
)
from ipsas_ledger.models.fund import Fund
from ipsas_ledger.models.gl import Account
from ipsas_ledger.models.org import Entity
from ipsas_ledger.schemas import EntityCreate, EntityUpdate, FundCreate
from ipsas_ledger.services.audit_service import AuditWriter, NullAuditWriter, build_event

logger = logging.getLogger(__name__)

MAX_ENTITY_DEPTH = 20


class OrganizationService:
    def __init__(self, db: AsyncSession, audit: AuditWriter | None = None):
        self.db = db
        self.audit = audit or NullAuditWriter()

    # ---- Entities ----

    async def create_entity(self, data: EntityCreate, actor: str | None = None) -> Entity:
        async with atomic(self.db):
            existing = await self.db.execute(select(Entity.id).where(Entity.code == data.code))
            if existing.scalar_one_or_none() is not None:
                raise DuplicateKeyError(
                    f"Entity code {data.code} already exists", {"code": data.code}
                )
            if data.parent_entity_id:
                await self.get_entity(data.parent_entity_id)

            entity = Entity(
                code=data.code,
                name=data.name,
                entity_type=data.entity_type.value,
                parent_entity_id=data.parent_entity_id,
                fiscal_year_end=data.fiscal_year_end or settings.DEFAULT_FISCAL_YEAR_END,
                currency_code=data.currency_code,
                description=data.description,
            )
            self.db.add(entity)
            await flush_or_raise(self.db, f"Entity code {data.code} already exists")

        logger.info("Created entity %s (%s)", entity.code, entity.id)
        self.audit.fire_and_forget(build_event(
            "org.entity.create", actor, "entity", entity.id, {"code": entity.code},
        ))
        return entity

    async def update_entity(
        self,
        entity_id: uuid.UUID,
        patch: EntityUpdate,
        actor: str | None = None,
    ) -> Entity:
        changes = patch.model_dump(exclude_unset=True)

        async with atomic(self.db):
            entity = await self.db.get(
                Entity, entity_id, with_for_update=True, populate_existing=True
            )
            if entity is None:
                raise NotFoundError("Entity", entity_id)

            if "parent_entity_id" in changes:
                parent_id = changes.pop("parent_entity_id")
                if parent_id is not None:
                    await self._ensure_not_ancestor(entity, parent_id)
                entity.parent_entity_id = parent_id

            for field, value in changes.items():
                if value is None:
                    continue
                if field == "entity_type":
                    value = value.value
                setattr(entity, field, value)

            await self.db.flush()

        self.audit.fire_and_forget(build_event(
            "org.entity.update", actor, "entity", entity.id,
            {k: str(v) for k, v in patch.model_dump(exclude_unset=True).items()},
        ))
        return entity

    async def deactivate_entity(self, entity_id: uuid.UUID, actor: str | None = None) -> Entity:
        async with atomic(self.db):
            entity = await self.db.get(
                Entity, entity_id, with_for_update=True, populate_existing=True
            )
            if entity is None:
                raise NotFoundError("Entity", entity_id)
            if not entity.is_active:
                return entity

            child = await self.db.execute(
                select(Entity.code)
                .where(Entity.parent_entity_id == entity.id, Entity.is_active == True)  # noqa: E712
                .limit(1)
            )
            if child.scalar_one_or_none() is not None:
                raise ConflictError(
                    f"Cannot deactivate entity {entity.code}: it has active child entities",
                    {"entity_id": str(entity.id)},
                )
            fund = await self.db.execute(
                select(Fund.code)
                .where(Fund.entity_id == entity.id, Fund.is_active == True)  # noqa: E712
                .limit(1)
            )
            if fund.scalar_one_or_none() is not None:
                raise ConflictError(
                    f"Cannot deactivate entity {entity.code}: it has active funds",
                    {"entity_id": str(entity.id)},
                )

            entity.is_active = False
            await self.db.flush()

        logger.info("Deactivated entity %s (%s)", entity.code, entity.id)
        self.audit.fire_and_forget(build_event(
            "org.entity.deactivate", actor, "entity", entity.id, {"code": entity.code},
        ))
        return entity

    async def get_entity(self, entity_id: uuid.UUID) -> Entity:
        entity = await self.db.get(Entity, entity_id)
        if entity is None:
            raise NotFoundError("Entity", entity_id)
        return entity

    async def list_entities(self, active: bool | None = True) -> list[Entity]:
        stmt = select(Entity).order_by(Entity.code)
        if active is not None:
            stmt = stmt.where(Entity.is_active == active)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _ensure_not_ancestor(self, entity: Entity, parent_id: uuid.UUID) -> None:
        current_id: uuid.UUID | None = parent_id
        for _ in range(MAX_ENTITY_DEPTH):
            if current_id is None:
                return
            if current_id == entity.id:
                raise InvalidInputError(
                    f"Entity {entity.code} cannot be its own ancestor",
                    {"entity_id": str(entity.id), "parent_entity_id": str(parent_id)},
                )
            current = await self.db.get(Entity, current_id)
            if current is None:
                raise NotFoundError("Entity", current_id)
            current_id = current.parent_entity_id
        raise InvalidInputError(
            f"Entity hierarchy cannot exceed {MAX_ENTITY_DEPTH} levels",
            {"parent_entity_id": str(parent_id)},
        )

    # ---- Funds ----

    async def create_fund(self, data: FundCreate, actor: str | None = None) -> Fund:
        if data.entity_id is None:
            raise InvalidInputError("Fund requires an owning entity")
        async with atomic(self.db):
            entity = await self.get_entity(data.entity_id)
            if not entity.is_active:
                raise ConflictError(
                    f"Entity is not active: {entity.code}", {"entity_id": str(entity.id)}
                )
            existing = await self.db.execute(
                select(Fund.id).where(Fund.code == data.code, Fund.entity_id == data.entity_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise DuplicateKeyError(
                    f"Fund code {data.code} already exists for entity {entity.code}",
                    {"code": data.code, "entity_id": str(data.entity_id)},
                )

            fund = Fund(
                code=data.code,
                name=data.name,
                fund_type=data.fund_type.value,
                entity_id=data.entity_id,
                description=data.description,
                budget_authority=data.budget_authority,
                carry_forward_allowed=data.carry_forward_allowed,
            )
            self.db.add(fund)
            await flush_or_raise(
                self.db, f"Fund code {data.code} already exists for entity {entity.code}"
            )

        logger.info("Created fund %s (%s) for entity %s", fund.code, fund.id, entity.code)
        self.audit.fire_and_forget(build_event(
            "org.fund.create", actor, "fund", fund.id,
            {"code": fund.code, "entity_id": str(fund.entity_id)},
        ))
        return fund

    async def deactivate_fund(self, fund_id: uuid.UUID, actor: str | None = None) -> Fund:
        async with atomic(self.db):
            fund = await self.db.get(Fund, fund_id, with_for_update=True, populate_existing=True)
            if fund is None:
                raise NotFoundError("Fund", fund_id)
            if not fund.is_active:
                return fund

            account = await self.db.execute(
                select(Account.code)
                .where(Account.fund_id == fund.id, Account.is_active == True)  # noqa: E712
                .limit(1)
            )
            if account.scalar_one_or_none() is not None:
                raise ConflictError(
                    f"Cannot deactivate fund {fund.code}: it has active accounts",
                    {"fund_id": str(fund.id)},
                )

            fund.is_active = False
            await self.db.flush()

        self.audit.fire_and_forget(build_event(
            "org.fund.deactivate", actor, "fund", fund.id, {"code": fund.code},
        ))
        return fund

    async def get_fund(self, fund_id: uuid.UUID) -> Fund:
        fund = await self.db.get(Fund, fund_id)
        if fund is None:
            raise NotFoundError("Fund", fund_id)
        return fund

    async def list_funds(self, entity_id: uuid.UUID, active: bool | None = True) -> list[Fund]:
        await self.get_entity(entity_id)
        stmt = select(Fund).where(Fund.entity_id == entity_id).order_by(Fund.code)
        if active is not None:
            stmt = stmt.where(Fund.is_active == active)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
