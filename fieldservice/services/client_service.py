"""
Справочник клиентов (обслуживаемых объектов).
"""

import logging

from fieldservice.core.exceptions import NotFoundError
from fieldservice.models.client import Client
from fieldservice.models.schema import CLIENTS, from_row, to_row
from fieldservice.services.backend import DataBackend, OrderBy

logger = logging.getLogger(__name__)


class ClientDirectory:
    def __init__(self, backend: DataBackend):
        self.backend = backend

    async def list_clients(self) -> list[Client]:
        rows = await self.backend.select(CLIENTS, order=OrderBy("name"))
        return [from_row(Client, row) for row in rows]

    async def get(self, client_id: str) -> Client:
        rows = await self.backend.select(CLIENTS, {"id": client_id}, limit=1)
        if not rows:
            raise NotFoundError("Клиент", client_id)
        return from_row(Client, rows[0])

    async def add(self, client: Client) -> Client:
        await self.backend.insert(CLIENTS, to_row(client))
        logger.info(f"Client {client.id} '{client.name}' added.")
        return client

    async def update(self, client_id: str, **changes) -> Client:
        updated = await self.backend.update(CLIENTS, changes, {"id": client_id})
        if not updated:
            raise NotFoundError("Клиент", client_id)
        logger.info(f"Client {client_id} updated: {sorted(changes)}.")
        return from_row(Client, updated[0])

    async def delete(self, client_id: str) -> bool:
        deleted = await self.backend.delete(CLIENTS, {"id": client_id})
        if deleted:
            logger.info(f"Client {client_id} deleted.")
            return True
        logger.warning(f"Client {client_id} not found for deletion.")
        return False
