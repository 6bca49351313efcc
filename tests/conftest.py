from __future__ import annotations

import logging

import httpx
import pytest

from m365_license_tools.graph.client import GraphClient
from m365_license_tools.licensing.models import SubscribedSku
from m365_license_tools.licensing.skus import SkuCatalog
from m365_license_tools.safety.guardian import SafetyGuardian, MODE_LICENSE_REMOVAL

E5_ID = "06ebc4ee-1bb5-47dd-8120-11324bc54e06"
E3_ID = "05e9a617-0261-4cee-bb44-138d3ef5d965"

SKUS = [
    {"skuId": E5_ID, "skuPartNumber": "SPE_E5", "consumedUnits": 10, "prepaidUnits": {"enabled": 25}},
    {"skuId": E3_ID, "skuPartNumber": "SPE_E3", "consumedUnits": 40, "prepaidUnits": {"enabled": 40}},
]


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_client(sleeps):
    def factory(handler, mode=MODE_LICENSE_REMOVAL, retry=None) -> GraphClient:
        return GraphClient(
            access_token="token",
            guardian=SafetyGuardian(mode),
            retry=retry,
            transport=httpx.MockTransport(handler),
            sleep=sleeps,
        )
    return factory


@pytest.fixture
def catalog() -> SkuCatalog:
    return SkuCatalog(SubscribedSku.from_graph(s) for s in SKUS)


@pytest.fixture(autouse=True)
def reset_cli_logging():
    yield
    logger = logging.getLogger("m365_license_tools")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
