"""Shared fixtures for phdsync tests."""

import pytest

from phdsync.models import RemoteDocument, RemoteOperation
from tests.fakes import FakeSwitchboard


@pytest.fixture
def switchboard():
    """Empty in-memory switchboard."""
    return FakeSwitchboard()


@pytest.fixture
def remote_document():
    """Fetched document with three global operations."""
    operations = [
        RemoteOperation(
            id=f"op-{index}",
            type="SET_NAME" if index == 0 else "ADD_ITEM",
            index=index,
            timestamp_utc_ms=f"2024-05-01T10:00:0{index}.000Z",
            hash=f"h{index}",
            skip=None if index == 0 else 0,
            input_text='{"name": "Widget"}' if index == 0 else f'{{"item{index}": {index}}}',
        )
        for index in range(3)
    ]
    return RemoteDocument(
        id="doc-1",
        name="My Widget",
        document_type="demo/widget",
        revision=7,
        created_at_utc_iso="2024-05-01T09:00:00.000Z",
        last_modified_at_utc_iso="2024-05-01T10:00:02.000Z",
        operations=operations,
        state={"name": "Widget", "item1": 1, "item2": 2},
    )


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace asyncio.sleep in the client with a recorder of requested delays."""
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("phdsync.client.asyncio.sleep", fake_sleep)
    return sleeps
