import asyncio
import socket
from typing import AsyncGenerator

import aiohttp
import pytest
import pytest_asyncio
from multidict import CIMultiDict, CIMultiDictProxy
from scam_detection_server import ScamDetectionServer
from yarl import URL

BASE_URL_TEMPLATE = "http://127.0.0.1:{}"


class FakeClock:
    """Monotonic clock that only moves when someone sleeps on it"""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def server() -> AsyncGenerator[tuple, None]:
    """Start and yield a ScamDetectionServer on a random port."""
    server_instance = ScamDetectionServer()
    port = await server_instance.start(port=0)
    try:
        yield server_instance, BASE_URL_TEMPLATE.format(port)
    finally:
        await server_instance.stop()


@pytest.fixture
def dead_url() -> str:
    """URL of a port that nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return BASE_URL_TEMPLATE.format(port)


def response_error(status: int, message: str = "") -> aiohttp.ClientResponseError:
    url = URL("http://backend.test/detect")
    request_info = aiohttp.RequestInfo(
        url=url,
        method="POST",
        headers=CIMultiDictProxy(CIMultiDict()),
        real_url=url,
    )
    return aiohttp.ClientResponseError(
        request_info, (), status=status, message=message
    )
