"""
Tests 96-110: Organization

Entities (codes, parents, fiscal-year end, deactivation) and the funds they
own.
"""
import uuid
from decimal import Decimal

import pytest
from pydantic import ValidationError

from ipsas_ledger.exceptions import (
    ConflictError,
    DuplicateKeyError,
    InvalidInputError,
    NotFoundError,
)
from ipsas_ledger.models.enums import EntityType, FundType
from ipsas_ledger.schemas import EntityCreate, EntityUpdate, FundCreate


def entity_payload(code, **kwargs):
    return EntityCreate(code=code, name=f"Entity {code}", entity_type=EntityType.AGENCY, **kwargs)


class TestEntities:

    async def test_96_defaults_applied(self, org_service):
        entity = await org_service.create_entity(entity_payload("PARKS"))
        assert entity.fiscal_year_end == "12-31"
        assert entity.currency_code == "USD"
        assert entity.is_active is True

    async def test_97_duplicate_code_rejected(self, org_service):
        await org_service.create_entity(entity_payload("PARKS"))
        with pytest.raises(DuplicateKeyError):
            await org_service.create_entity(entity_payload("PARKS"))

    async def test_98_unknown_parent_not_found(self, org_service):
        with pytest.raises(NotFoundError):
            await org_service.create_entity(entity_payload("PARKS", parent_entity_id=uuid.uuid4()))

    def test_99_payload_shape_validated(self):
        with pytest.raises(ValidationError):
            entity_payload("P")
        with pytest.raises(ValidationError):
            entity_payload("PARKS", fiscal_year_end="13-01")
        with pytest.raises(ValidationError):
            entity_payload("PARKS", currency_code="usd")

    async def test_100_update_fields(self, org_service):
        entity = await org_service.create_entity(entity_payload("PARKS"))
        updated = await org_service.update_entity(
            entity.id,
            EntityUpdate(name="Parks and Recreation", fiscal_year_end="06-30",
                         entity_type=EntityType.DEPARTMENT),
        )
        assert updated.name == "Parks and Recreation"
        assert updated.fiscal_year_end == "06-30"
        assert updated.entity_type == "DEPARTMENT"

    async def test_101_reparent_cycle_rejected(self, org_service):
        city = await org_service.create_entity(entity_payload("CITY"))
        parks = await org_service.create_entity(entity_payload("PARKS", parent_entity_id=city.id))
        city_id, parks_id = city.id, parks.id
        with pytest.raises(InvalidInputError):
            await org_service.update_entity(city_id, EntityUpdate(parent_entity_id=parks_id))
        with pytest.raises(InvalidInputError):
            await org_service.update_entity(city_id, EntityUpdate(parent_entity_id=city_id))

    async def test_102_deactivate_blocked_by_children_and_funds(self, org_service):
        city = await org_service.create_entity(entity_payload("CITY"))
        parks = await org_service.create_entity(entity_payload("PARKS", parent_entity_id=city.id))
        city_id, parks_id = city.id, parks.id

        with pytest.raises(ConflictError):
            await org_service.deactivate_entity(city_id)

        await org_service.deactivate_entity(parks_id)
        fund = await org_service.create_fund(FundCreate(
            code="GF", name="General Fund", fund_type=FundType.GENERAL, entity_id=city_id,
        ))
        fund_id = fund.id
        with pytest.raises(ConflictError):
            await org_service.deactivate_entity(city_id)

        await org_service.deactivate_fund(fund_id)
        assert (await org_service.deactivate_entity(city_id)).is_active is False

    async def test_103_deactivate_entity_is_idempotent(self, org_service):
        entity = await org_service.create_entity(entity_payload("PARKS"))
        await org_service.deactivate_entity(entity.id)
        assert (await org_service.deactivate_entity(entity.id)).is_active is False

    async def test_104_list_entities_ordered_and_filtered(self, org_service):
        for code in ("ZOO", "LIB", "PARKS"):
            await org_service.create_entity(entity_payload(code))
        lib = (await org_service.list_entities())[0]
        await org_service.deactivate_entity(lib.id)

        assert [e.code for e in await org_service.list_entities()] == ["PARKS", "ZOO"]
        assert [e.code for e in await org_service.list_entities(active=None)] == ["LIB", "PARKS", "ZOO"]
        assert [e.code for e in await org_service.list_entities(active=False)] == ["LIB"]


class TestFunds:

    async def test_105_create_fund(self, org_service, ledger):
        fund = await org_service.create_fund(FundCreate(
            code="DSF", name="Debt Service Fund", fund_type=FundType.DEBT_SERVICE,
            entity_id=ledger["entity_id"], budget_authority=Decimal("2500000.00"),
            carry_forward_allowed=True,
        ))
        assert fund.budget_authority == Decimal("2500000.00")
        assert fund.carry_forward_allowed is True

    async def test_106_fund_code_unique_per_entity(self, org_service, ledger):
        with pytest.raises(DuplicateKeyError):
            await org_service.create_fund(FundCreate(
                code="GF", name="General Fund", fund_type=FundType.GENERAL,
                entity_id=ledger["entity_id"],
            ))
        other = await org_service.create_entity(entity_payload("COUNTY"))
        fund = await org_service.create_fund(FundCreate(
            code="GF", name="General Fund", fund_type=FundType.GENERAL, entity_id=other.id,
        ))
        assert fund.entity_id == other.id

    async def test_107_fund_for_inactive_entity_rejected(self, org_service):
        entity = await org_service.create_entity(entity_payload("PARKS"))
        entity_id = entity.id
        await org_service.deactivate_entity(entity_id)
        with pytest.raises(ConflictError):
            await org_service.create_fund(FundCreate(
                code="GF", name="General Fund", fund_type=FundType.GENERAL, entity_id=entity_id,
            ))

    def test_108_negative_budget_authority_rejected(self):
        with pytest.raises(ValidationError):
            FundCreate(code="GF", name="General Fund", fund_type=FundType.GENERAL,
                       entity_id=uuid.uuid4(), budget_authority=Decimal("-1.00"))

    async def test_109_deactivate_fund_blocked_by_active_accounts(self, org_service, ledger):
        with pytest.raises(ConflictError):
            await org_service.deactivate_fund(ledger["fund_id"])

    async def test_110_list_funds(self, org_service, ledger):
        await org_service.create_fund(FundCreate(
            code="CPF", name="Capital Projects", fund_type=FundType.CAPITAL_PROJECTS,
            entity_id=ledger["entity_id"],
        ))
        funds = await org_service.list_funds(ledger["entity_id"])
        assert [f.code for f in funds] == ["CPF", "GF"]
        with pytest.raises(NotFoundError):
            await org_service.list_funds(uuid.uuid4())
