"""Service-to-service lookups used by the terminal gateway."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lab_shared.errors import NotFound
from lab_shared.schemas.container import ContainerDTO

from lab_api.db.engine import get_db
from lab_api.dependencies import verify_service_token
from lab_api.services import record_writer

router = APIRouter(
    prefix="/internal/containers",
    tags=["internal"],
    dependencies=[Depends(verify_service_token)],
)


@router.get("/{container_id}", response_model=ContainerDTO)
async def get_container(
    container_id: int,
    db: AsyncSession = Depends(get_db),
) -> ContainerDTO:
    async with db.begin():
        container = await record_writer.get_container_record(db, container_id)
    if container is None:
        raise NotFound(f"Container {container_id} not found")
    return container
