"""Chart of accounts: account creation, re-parenting, deactivation and hierarchy queries."""
from __future__ import annotations

import dataclasses
import logging
import uuid
from collections import defaultdict

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ipsas_ledger.database import atomic, flush_or_raise
from ipsas_ledger.exceptions import (
    ConflictError,
    DuplicateKeyError,
    InvalidInputError,
    NotFoundError,
)
from ipsas_ledger.models.enums import NORMAL_BALANCE_BY_TYPE, AccountType
from ipsas_ledger.models.fund import Fund
from ipsas_ledger.models.gl import Account
from ipsas_ledger.models.org import Entity
from ipsas_ledger.schemas import AccountCreate, AccountUpdate
from ipsas_ledger.services.audit_service import AuditWriter, NullAuditWriter, build_event
from ipsas_ledger.services.pagination import Page, PageParams, paginate

logger = logging.getLogger(__name__)

MAX_ACCOUNT_LEVEL = 10
SEARCH_LIMIT = 50


@dataclasses.dataclass
class AccountNode:
    """An account with its nested children, as returned by the hierarchy query."""

    account: Account
    level: int
    children: list[AccountNode] = dataclasses.field(default_factory=list)


class ChartOfAccountsService:
    def __init__(self, db: AsyncSession, audit: AuditWriter | None = None):
        self.db = db
        self.audit = audit or NullAuditWriter()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_account(self, data: AccountCreate, actor: str | None = None) -> Account:
        async with atomic(self.db):
            await self._ensure_code_available(data.code, data.fund_id, data.entity_id)
            await self._ensure_fund_in_entity(data.fund_id, data.entity_id)

            level = 1
            if data.parent_account_id:
                parent = await self.db.get(
                    Account, data.parent_account_id,
                    with_for_update={"read": True}, populate_existing=True,
                )
                if parent is None:
                    raise NotFoundError("Parent account", data.parent_account_id)
                self._ensure_same_ledger(parent, data.fund_id, data.entity_id)
                self._ensure_can_hold_children(parent)
                level = parent.level + 1
                if level > MAX_ACCOUNT_LEVEL:
                    raise InvalidInputError(
                        f"Account hierarchy cannot exceed {MAX_ACCOUNT_LEVEL} levels",
                        {"parent_account_id": str(parent.id), "level": level},
                    )

            normal_balance = data.normal_balance or NORMAL_BALANCE_BY_TYPE[data.account_type]

            account = Account(
                code=data.code,
                name=data.name,
                account_type=data.account_type.value,
                parent_account_id=data.parent_account_id,
                fund_id=data.fund_id,
                entity_id=data.entity_id,
                normal_balance=normal_balance.value,
                level=level,
                is_detail_account=data.is_detail_account,
                budget_account=data.budget_account,
                requires_fund_accounting=data.requires_fund_accounting,
                description=data.description,
            )
            self.db.add(account)
            await flush_or_raise(
                self.db, f"Account code {data.code} already exists in this fund"
            )

        logger.info("Created account %s (%s) level=%d", account.code, account.id, account.level)
        self.audit.fire_and_forget(build_event(
            "coa.account.create", actor, "account", account.id,
            {"code": account.code, "fund_id": str(account.fund_id), "entity_id": str(account.entity_id)},
        ))
        return account

    async def update_account(
        self,
        account_id: uuid.UUID,
        patch: AccountUpdate,
        actor: str | None = None,
    ) -> Account:
        """Apply *patch*.  A parent change re-levels the account and its subtree."""
        changes = patch.model_dump(exclude_unset=True)

        async with atomic(self.db):
            account = await self.db.get(
                Account, account_id, with_for_update=True, populate_existing=True
            )
            if account is None:
                raise NotFoundError("Account", account_id)

            new_code = changes.get("code")
            if new_code is not None and new_code != account.code:
                await self._ensure_code_available(
                    new_code, account.fund_id, account.entity_id, exclude_id=account.id
                )

            if "parent_account_id" in changes and changes["parent_account_id"] != account.parent_account_id:
                await self._reparent(account, changes["parent_account_id"])

            if changes.get("is_detail_account") and not account.is_detail_account:
                await self._ensure_no_active_children(
                    account, f"Account {account.code} cannot become a detail account: it has active children"
                )

            for field in (
                "code",
                "name",
                "description",
                "is_detail_account",
                "budget_account",
                "requires_fund_accounting",
            ):
                if field in changes and changes[field] is not None:
                    setattr(account, field, changes[field])

            await flush_or_raise(
                self.db, f"Account code {account.code} already exists in this fund"
            )

        self.audit.fire_and_forget(build_event(
            "coa.account.update", actor, "account", account.id,
            {k: str(v) if v is not None else None for k, v in changes.items()},
        ))
        return account

    async def deactivate_account(self, account_id: uuid.UUID, actor: str | None = None) -> Account:
        """Soft-delete an account.  Already inactive accounts are returned unchanged."""
        async with atomic(self.db):
            account = await self.db.get(
                Account, account_id, with_for_update=True, populate_existing=True
            )
            if account is None:
                raise NotFoundError("Account", account_id)
            if not account.is_active:
                return account

            await self._ensure_no_active_children(
                account, f"Cannot deactivate account {account.code}: it has active children"
            )

            account.is_active = False
            await self.db.flush()

        logger.info("Deactivated account %s (%s)", account.code, account.id)
        self.audit.fire_and_forget(build_event(
            "coa.account.deactivate", actor, "account", account.id, {"code": account.code},
        ))
        return account

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_account(self, account_id: uuid.UUID) -> Account:
        account = await self.db.get(Account, account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    async def list_accounts(
        self,
        entity_id: uuid.UUID,
        fund_id: uuid.UUID,
        params: PageParams,
        include_inactive: bool = False,
    ) -> Page[Account]:
        stmt = select(Account).where(Account.entity_id == entity_id, Account.fund_id == fund_id)
        if not include_inactive:
            stmt = stmt.where(Account.is_active == True)  # noqa: E712
        return await paginate(self.db, stmt, Account, params)

    async def get_account_hierarchy(
        self, entity_id: uuid.UUID, fund_id: uuid.UUID
    ) -> list[AccountNode]:
        """Forest of active accounts, ordered by code at every level."""
        accounts = await self._active_accounts(entity_id, fund_id)

        children_of: dict[uuid.UUID | None, list[Account]] = defaultdict(list)
        for account in accounts:
            children_of[account.parent_account_id].append(account)

        def build(nodes: list[Account]) -> list[AccountNode]:
            return [
                AccountNode(account=a, level=a.level, children=build(children_of.get(a.id, [])))
                for a in nodes
            ]

        return build(children_of.get(None, []))

    async def get_accounts_by_type(
        self,
        entity_id: uuid.UUID,
        fund_id: uuid.UUID,
        account_type: AccountType,
    ) -> list[Account]:
        return await self._active_accounts(
            entity_id, fund_id, Account.account_type == AccountType(account_type).value
        )

    async def get_detail_accounts(self, entity_id: uuid.UUID, fund_id: uuid.UUID) -> list[Account]:
        return await self._active_accounts(
            entity_id, fund_id, Account.is_detail_account == True  # noqa: E712
        )

    async def search_accounts(
        self,
        entity_id: uuid.UUID,
        fund_id: uuid.UUID,
        term: str,
    ) -> list[Account]:
        """Case-insensitive substring match on code or name, first 50 by code."""
        term = (term or "").strip()
        if not term:
            raise InvalidInputError("Search term is required")

        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        stmt = (
            select(Account)
            .where(
                Account.entity_id == entity_id,
                Account.fund_id == fund_id,
                Account.is_active == True,  # noqa: E712
                or_(
                    Account.code.ilike(pattern, escape="\\"),
                    Account.name.ilike(pattern, escape="\\"),
                ),
            )
            .order_by(Account.code)
            .limit(SEARCH_LIMIT)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _active_accounts(self, entity_id, fund_id, *criteria) -> list[Account]:
        stmt = (
            select(Account)
            .where(
                Account.entity_id == entity_id,
                Account.fund_id == fund_id,
                Account.is_active == True,  # noqa: E712
                *criteria,
            )
            .order_by(Account.code)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _ensure_code_available(
        self,
        code: str,
        fund_id: uuid.UUID,
        entity_id: uuid.UUID,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = select(Account.id).where(
            Account.code == code,
            Account.fund_id == fund_id,
            Account.entity_id == entity_id,
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        existing = (await self.db.execute(stmt.limit(1))).scalar_one_or_none()
        if existing is not None:
            raise DuplicateKeyError(
                f"Account code {code} already exists in this fund",
                {"code": code, "fund_id": str(fund_id), "entity_id": str(entity_id)},
            )

    async def _ensure_fund_in_entity(self, fund_id: uuid.UUID, entity_id: uuid.UUID) -> None:
        entity = await self.db.get(Entity, entity_id)
        if entity is None:
            raise NotFoundError("Entity", entity_id)
        fund = await self.db.get(Fund, fund_id)
        if fund is None:
            raise NotFoundError("Fund", fund_id)
        if fund.entity_id != entity.id:
            raise InvalidInputError(
                f"Fund {fund.code} does not belong to entity {entity.code}",
                {"fund_id": str(fund_id), "entity_id": str(entity_id)},
            )

    @staticmethod
    def _ensure_same_ledger(parent: Account, fund_id: uuid.UUID, entity_id: uuid.UUID) -> None:
        if parent.fund_id != fund_id or parent.entity_id != entity_id:
            raise InvalidInputError(
                f"Parent account {parent.code} belongs to a different fund or entity",
                {"parent_account_id": str(parent.id)},
            )

    async def _ensure_no_active_children(self, account: Account, message: str) -> None:
        result = await self.db.execute(
            select(Account.code)
            .where(Account.parent_account_id == account.id, Account.is_active == True)  # noqa: E712
            .order_by(Account.code)
        )
        active_children = list(result.scalars().all())
        if active_children:
            raise ConflictError(
                message,
                {"account_id": str(account.id), "active_children": active_children},
            )

    @staticmethod
    def _ensure_can_hold_children(parent: Account) -> None:
        """Only active summary accounts take children; detail accounts stay leaves."""
        if not parent.is_active:
            raise ConflictError(
                f"Parent account {parent.code} is not active",
                {"parent_account_id": str(parent.id)},
            )
        if parent.is_detail_account:
            raise ConflictError(
                f"Cannot add child to detail account {parent.code}",
                {"parent_account_id": str(parent.id)},
            )

    async def _reparent(self, account: Account, new_parent_id: uuid.UUID | None) -> None:
        """Move *account* under *new_parent_id* and re-level its whole subtree."""
        if new_parent_id is None:
            base_level = 1
        else:
            if new_parent_id == account.id:
                raise InvalidInputError(
                    f"Account {account.code} cannot be its own parent",
                    {"account_id": str(account.id)},
                )
            parent = await self.db.get(
                Account, new_parent_id, with_for_update={"read": True}, populate_existing=True
            )
            if parent is None:
                raise NotFoundError("Parent account", new_parent_id)
            self._ensure_same_ledger(parent, account.fund_id, account.entity_id)
            await self._ensure_not_ancestor(account, parent)
            self._ensure_can_hold_children(parent)
            base_level = parent.level + 1

        result = await self.db.execute(
            select(Account).where(
                Account.fund_id == account.fund_id,
                Account.entity_id == account.entity_id,
            )
        )
        children_of: dict[uuid.UUID | None, list[Account]] = defaultdict(list)
        for candidate in result.scalars().all():
            if candidate.id != account.id:
                children_of[candidate.parent_account_id].append(candidate)

        new_levels: dict[uuid.UUID, int] = {}
        stack: list[tuple[uuid.UUID, int]] = [(account.id, base_level)]
        while stack:
            node_id, level = stack.pop()
            if level > MAX_ACCOUNT_LEVEL:
                raise InvalidInputError(
                    f"Moving account {account.code} would exceed {MAX_ACCOUNT_LEVEL} hierarchy levels",
                    {"account_id": str(account.id)},
                )
            new_levels[node_id] = level
            stack.extend((child.id, level + 1) for child in children_of.get(node_id, []))

        account.parent_account_id = new_parent_id
        account.level = new_levels.pop(account.id)
        for descendants in children_of.values():
            for descendant in descendants:
                if descendant.id in new_levels:
                    descendant.level = new_levels[descendant.id]

    async def _ensure_not_ancestor(self, account: Account, new_parent: Account) -> None:
        """Walk up from *new_parent*; reaching *account* would close a cycle."""
        current: Account | None = new_parent
        for _ in range(MAX_ACCOUNT_LEVEL + 1):
            if current is None:
                return
            if current.id == account.id:
                raise InvalidInputError(
                    f"Account {account.code} cannot be moved under its own descendant",
                    {"account_id": str(account.id), "parent_account_id": str(new_parent.id)},
                )
            if current.parent_account_id is None:
                return
            current = await self.db.get(Account, current.parent_account_id)
        raise InvalidInputError(
            "Account hierarchy is deeper than allowed or contains a cycle",
            {"parent_account_id": str(new_parent.id)},
        )
