"""
Flow store tests
"""
import pytest

from reminder_flows.exceptions import FlowNotFoundError, FlowValidationError
from reminder_flows.models import TriggerEvent


class TestFlowStore:

    @pytest.mark.asyncio
    async def test_create_and_get(self, flow_store, follow_up_document):
        flow = await flow_store.create(follow_up_document)

        assert flow.version == 1
        stored = await flow_store.get("flow-follow-up")
        assert stored.name == "New application follow-up"
        assert stored.trigger_event == TriggerEvent.APPLICATION_CREATED

    @pytest.mark.asyncio
    async def test_create_generates_id(self, flow_store, follow_up_document):
        del follow_up_document["id"]

        flow = await flow_store.create(follow_up_document)

        assert flow.id
        assert (await flow_store.get(flow.id)).name == follow_up_document["name"]

    @pytest.mark.asyncio
    async def test_create_rejects_existing_id(self, flow_store, follow_up_document):
        await flow_store.create(follow_up_document)

        with pytest.raises(FlowValidationError):
            await flow_store.create(follow_up_document)

    @pytest.mark.asyncio
    async def test_invalid_document_is_not_stored(self, flow_store, follow_up_document):
        follow_up_document["connections"] = []

        with pytest.raises(FlowValidationError):
            await flow_store.create(follow_up_document)
        assert await flow_store.list() == []

    @pytest.mark.asyncio
    async def test_update_creates_version(self, flow_store, follow_up_document):
        await flow_store.create(follow_up_document)
        follow_up_document["name"] = "Renamed"

        updated = await flow_store.update("flow-follow-up", follow_up_document)

        assert updated.version == 2
        assert (await flow_store.get("flow-follow-up")).name == "Renamed"
        assert (await flow_store.get("flow-follow-up", version=1)).name == "New application follow-up"

    @pytest.mark.asyncio
    async def test_update_missing_flow(self, flow_store, follow_up_document):
        with pytest.raises(FlowNotFoundError):
            await flow_store.update("nope", follow_up_document)

    @pytest.mark.asyncio
    async def test_get_missing_version(self, flow_store, follow_up_flow):
        with pytest.raises(FlowNotFoundError) as exc_info:
            await flow_store.get(follow_up_flow.id, version=9)
        assert exc_info.value.version == 9

    @pytest.mark.asyncio
    async def test_toggle(self, flow_store, follow_up_flow):
        flipped = await flow_store.toggle(follow_up_flow.id)
        assert flipped.is_active is False
        assert flipped.version == 1

        assert (await flow_store.toggle(follow_up_flow.id, True)).is_active is True
        assert (await flow_store.toggle(follow_up_flow.id, True)).is_active is True
        assert await flow_store.list(is_active=False) == []

    @pytest.mark.asyncio
    async def test_delete(self, flow_store, follow_up_flow):
        await flow_store.delete(follow_up_flow.id)

        with pytest.raises(FlowNotFoundError):
            await flow_store.get(follow_up_flow.id)
        with pytest.raises(FlowNotFoundError):
            await flow_store.delete(follow_up_flow.id)
