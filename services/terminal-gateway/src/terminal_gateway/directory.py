"""Resolves container ids to owner and address through the api-server."""

import logging

import httpx

from lab_shared.errors import NotFound
from lab_shared.schemas.container import ContainerDTO

logger = logging.getLogger(__name__)


class ContainerDirectory:
    """Looks containers up via ``GET /internal/containers/{id}``."""

    def __init__(self, api_server_url: str, service_token: str, timeout: float = 10.0):
        self._api_server_url = api_server_url.rstrip("/")
        self._service_token = service_token
        self._timeout = timeout

    async def lookup(self, container_id: int) -> ContainerDTO:
        """Fetch one container.

        Raises:
            NotFound: If the api-server has no such container.
            httpx.HTTPError: On transport failures or other error statuses.
        """
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{self._api_server_url}/internal/containers/{container_id}",
                headers={"X-Service-Token": self._service_token},
            )
        if response.status_code == 404:
            raise NotFound(f"Container {container_id} not found")
        response.raise_for_status()
        return ContainerDTO.model_validate(response.json())
