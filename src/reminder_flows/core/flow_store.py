"""
Flow store: the validated save path for flow definitions
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import FlowNotFoundError, FlowValidationError
from ..models.flow import Flow
from ..storage.repository import FlowRepository
from .parser import FlowParser


logger = logging.getLogger(__name__)


class FlowStore:
    """Parses and validates flow documents before they reach the runtime"""

    def __init__(self, repository: FlowRepository, parser: FlowParser = None):
        self.repository = repository
        self.parser = parser or FlowParser()

    async def create(self, document: Union[str, Path, Dict[str, Any]]) -> Flow:
        flow = self.parser.parse(document)
        if await self.repository.get(flow.id):
            raise FlowValidationError([f"Flow '{flow.id}' already exists"])
        return await self.save(flow)

    async def update(self, flow_id: str, document: Union[str, Path, Dict[str, Any]]) -> Flow:
        """Replace a flow's definition; running executions keep their pinned version"""
        existing = await self.repository.get(flow_id)
        if existing is None:
            raise FlowNotFoundError(flow_id)

        flow = self.parser.parse(document)
        flow.id = flow_id
        return await self.save(flow)

    async def save(self, flow: Flow) -> Flow:
        errors = flow.validate()
        if errors:
            raise FlowValidationError(errors)

        saved = await self.repository.save(flow)
        logger.info(f"Flow '{saved.name}' ({saved.id}) saved as version {saved.version}")
        return saved

    async def get(self, flow_id: str, version: int = None) -> Flow:
        flow = await self.repository.get(flow_id, version)
        if flow is None:
            raise FlowNotFoundError(flow_id, version)
        return flow

    async def list(self, offset: int = 0, limit: int = 100, is_active: bool = None) -> List[Flow]:
        return await self.repository.list(offset=offset, limit=limit, is_active=is_active)

    async def toggle(self, flow_id: str, is_active: Optional[bool] = None) -> Flow:
        """Set the active flag, or flip it when ``is_active`` is None"""
        flow = await self.get(flow_id)
        target = (not flow.is_active) if is_active is None else is_active
        updated = await self.repository.set_active(flow_id, target)
        if updated is None:
            raise FlowNotFoundError(flow_id)

        logger.info(f"Flow {flow_id} {'activated' if target else 'deactivated'}")
        return updated

    async def delete(self, flow_id: str):
        if not await self.repository.delete(flow_id):
            raise FlowNotFoundError(flow_id)
        logger.info(f"Deleted flow {flow_id}")
