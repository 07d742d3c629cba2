import pytest

from pyovirt import BLANK_TEMPLATE_ID, CreateVMParams
from pyovirt.mock import new_mock_client


@pytest.fixture
def client():
    """PyOvirt client backed by a fresh in-memory engine, with zero retry delays."""
    return new_mock_client()


@pytest.fixture
def engine(client):
    """The MockTransport behind the client fixture."""
    return client.client


@pytest.fixture
def create_vm(client, engine):
    """Factory creating a VM from the blank template with a unique name."""
    counter = {"n": 0}

    async def factory(params: CreateVMParams = None, template_id: str = BLANK_TEMPLATE_ID):
        counter["n"] += 1
        return await client.create_vm(engine.cluster_id, template_id, f"test-vm-{counter['n']}", params=params)

    return factory
