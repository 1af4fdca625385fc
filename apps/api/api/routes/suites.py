from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from apps.api.api.errors import unwrap
from apps.api.dependencies.auth import CurrentIdentity
from apps.api.dependencies.services import SuiteCatalogDep
from apps.api.services.users import Suite, SuiteArea

router = APIRouter(prefix="/suites", tags=["suites"])


class SuiteModel(BaseModel):
    id: str
    area: SuiteArea
    number: int
    display_name: str
    capacity: int

    @classmethod
    def from_entity(cls, suite: Suite) -> "SuiteModel":
        return cls(
            id=suite.id,
            area=suite.area,
            number=suite.number,
            display_name=suite.display_name,
            capacity=suite.capacity,
        )


@router.get("", response_model=list[SuiteModel], summary="List suites")
async def list_suites(
    catalog: SuiteCatalogDep, identity: CurrentIdentity, area: SuiteArea | None = None
) -> list[SuiteModel]:
    return [SuiteModel.from_entity(suite) for suite in unwrap(await catalog.list_suites(identity, area=area))]


@router.get("/lookup/{area}/{number}", response_model=SuiteModel)
async def find_suite(area: SuiteArea, number: int, catalog: SuiteCatalogDep, identity: CurrentIdentity) -> SuiteModel:
    return SuiteModel.from_entity(unwrap(await catalog.find_suite(identity, area, number)))


@router.get("/{suite_id}", response_model=SuiteModel)
async def get_suite(suite_id: str, catalog: SuiteCatalogDep, identity: CurrentIdentity) -> SuiteModel:
    return SuiteModel.from_entity(unwrap(await catalog.get_suite(identity, suite_id)))
