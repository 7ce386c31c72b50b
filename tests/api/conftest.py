"""API test fixtures: an app wired to fake executors, driven through TestClient."""

import pytest
from fastapi.testclient import TestClient

from llm_dispatch.core.config import Settings
from llm_dispatch.executors import fake_executors
from llm_dispatch.main import create_app


@pytest.fixture
def api_client():
    """Factory: TestClient with the lifespan running (dispatcher started and stopped).

    Usage:
        client = api_client(coach_chat_requests_per_minute=1)
        client = api_client(executors=fake_executors("llm_failure"), retry_budget=0)
    """
    clients: list[TestClient] = []

    def _make(executors=None, **settings_overrides) -> TestClient:
        settings = Settings(_env_file=None, json_logs=False, **settings_overrides)
        app = create_app(executors=executors or fake_executors(), settings=settings)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
