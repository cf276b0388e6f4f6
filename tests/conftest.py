from __future__ import annotations

import pytest

from character_agent.config import Settings
from tests.agent_fixtures import FakeExtractor, FakeStepStore


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        nvm_environment="staging",
        nvm_api_key="test-key",
        nvm_backend_url="http://nvm.test",
        agent_did="did:nv:test-agent",
        anthropic_api_key="test-key",
    )


@pytest.fixture()
def store() -> FakeStepStore:
    return FakeStepStore()


@pytest.fixture()
def extractor() -> FakeExtractor:
    return FakeExtractor()
