"""User-facing container endpoints."""

import logging

from fastapi import APIRouter, Depends, status
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from lab_launcher.launcher import ComputeLauncher
from lab_shared.schemas.container import LaunchRequest, LaunchResponse
from lab_shared.tokens import TokenClaims

from lab_api.config import settings
from lab_api.db.engine import get_db
from lab_api.dependencies import get_active_user_claims, get_launcher, get_redis
from lab_api.middleware.rate_limit import check_rate_limit
from lab_api.services import provisioning_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/containers", tags=["containers"])


@router.post(
    "/launch",
    response_model=LaunchResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def launch_container(
    body: LaunchRequest,
    claims: TokenClaims = Depends(get_active_user_claims),
    launcher: ComputeLauncher = Depends(get_launcher),
    redis: Redis = Depends(get_redis),
    db: AsyncSession = Depends(get_db),
) -> LaunchResponse:
    """Provision a lab for the calling user and return its SSH descriptor."""
    await check_rate_limit(claims.user_id, "container_launch", redis)
    return await provisioning_service.launch_container(
        owner_user_id=claims.user_id,
        dependencies=body.dependencies,
        launcher=launcher,
        db=db,
        ssh_public_key=body.ssh_public_key,
        task_id=body.task_id,
        image=settings.lab_image,
        name_prefix=settings.container_name_prefix,
    )
