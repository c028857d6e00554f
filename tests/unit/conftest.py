import uuid

import pytest

from calq import CalqClient, ResponseCookies
from calq.queue import Endpoint, PendingCall

WRITE_KEY = "55ebeaebfcd351e0b69e6cc99dbb081d"


class RecordingQueue:
    """Stands in for DeliveryQueue; keeps calls instead of sending them."""

    def __init__(self):
        self.calls: list[PendingCall] = []
        self.sent: list[PendingCall] = []
        self.flushes = 0

    def enqueue(self, endpoint, payload):
        self.calls.append(PendingCall(endpoint=Endpoint(endpoint), payload=payload))

    def flush(self):
        self.flushes += 1
        delivered = list(self.calls)
        self.sent.extend(delivered)
        self.calls.clear()
        return delivered

    def endpoints(self):
        return [c.endpoint for c in self.calls]


@pytest.fixture
def write_key():
    return WRITE_KEY


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def cookies():
    return ResponseCookies()


@pytest.fixture
def client(queue, cookies):
    return CalqClient(str(uuid.uuid4()), WRITE_KEY, cookies=cookies, api_processor=queue)


def generate_test_actor():
    return f"TestActor{uuid.uuid4().hex[:8]}"
