"""Shared fixtures for tests."""

import asyncio
import os
from typing import Optional

import pytest

from diagram_studio.config import EditorSettings, ModelProvider, get_ollama_base_url
from diagram_studio.errors import PersistenceError
from diagram_studio.ids import SequentialIds
from diagram_studio.models import (
    DependencyKind,
    Diagram,
    DiagramEdge,
    DiagramNode,
    EdgeKind,
    NodeKind,
    Position,
)
from diagram_studio.persistence import InMemoryDiagramStore


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require external services)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )


# ============================================================================
# Environment Detection Fixtures
# ============================================================================

@pytest.fixture(scope="session")
def ollama_available() -> bool:
    """Check if Ollama server is available."""
    import httpx

    base_url = get_ollama_base_url().replace("/v1", "")
    try:
        response = httpx.get(f"{base_url}/api/tags", timeout=5.0)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


@pytest.fixture(scope="session")
def openai_available() -> bool:
    """Check if OpenAI API key is configured."""
    api_key = os.environ.get("OPENAI_API_KEY", "")
    return api_key.startswith("sk-") and len(api_key) > 20


@pytest.fixture
def require_llm(ollama_available, openai_available):
    """Skip test if no LLM provider is available."""
    provider = ModelProvider.from_env()
    if provider == ModelProvider.OLLAMA and not ollama_available:
        pytest.skip("Ollama server not available")
    if provider == ModelProvider.OPENAI and not openai_available:
        pytest.skip("OpenAI API key not configured")


# ============================================================================
# Id and Settings Fixtures
# ============================================================================

@pytest.fixture
def ids() -> SequentialIds:
    """Deterministic id generator: node_1, node_2, edge_1, ..."""
    return SequentialIds()


@pytest.fixture
def fast_settings() -> EditorSettings:
    """Settings with tiny timers so debounce tests run quickly."""
    return EditorSettings(
        save_debounce=0.02,
        save_attempts=3,
        save_backoff=0.0,
        generation_timeout=1.0,
        snap_grid=0,
    )


# ============================================================================
# Diagram Fixtures
# ============================================================================

@pytest.fixture
def sample_diagram() -> Diagram:
    """Customer and admin actors, two use cases, a boundary and three edges."""
    return Diagram(
        id="diagram_shop",
        title="Online Shop",
        nodes=[
            DiagramNode(id="customer", kind=NodeKind.ACTOR, label="Customer", position=Position(x=0, y=0)),
            DiagramNode(id="admin", kind=NodeKind.ACTOR, label="Admin", position=Position(x=0, y=200)),
            DiagramNode(id="shop", kind=NodeKind.SYSTEM, label="Shop", position=Position(x=250, y=-50)),
            DiagramNode(id="checkout", kind=NodeKind.USE_CASE, label="Checkout", position=Position(x=300, y=0)),
            DiagramNode(id="pay", kind=NodeKind.USE_CASE, label="Pay Online", position=Position(x=300, y=150)),
        ],
        edges=[
            DiagramEdge(id="e_customer_checkout", kind=EdgeKind.ASSOCIATION,
                        source_node_id="customer", source_handle_id="right-source",
                        target_node_id="checkout", target_handle_id="left-target"),
            DiagramEdge(id="e_checkout_pay", kind=EdgeKind.DEPENDENCY,
                        dependency_kind=DependencyKind.INCLUDE,
                        source_node_id="checkout", source_handle_id="bottom-source",
                        target_node_id="pay", target_handle_id="top-target"),
            DiagramEdge(id="e_admin_pay", kind=EdgeKind.ASSOCIATION,
                        source_node_id="admin", source_handle_id="right-source",
                        target_node_id="pay", target_handle_id="left-target"),
        ],
    )


@pytest.fixture
def valid_payload() -> dict:
    """Generation payload in the camelCase wire format."""
    return {
        "title": "Checkout",
        "nodes": [
            {"id": "n_customer", "kind": "actor", "label": "Customer", "position": {"x": 0, "y": 0}},
            {"id": "n_checkout", "kind": "usecase", "label": "Checkout", "position": {"x": 300, "y": 0}},
        ],
        "edges": [
            {
                "id": "e_1",
                "kind": "association",
                "sourceNodeId": "n_customer",
                "sourceHandleId": "right-source",
                "targetNodeId": "n_checkout",
                "targetHandleId": "left-target",
            }
        ],
        "viewport": {"x": 0, "y": 0, "zoom": 1.0},
    }


@pytest.fixture
def dangling_payload(valid_payload) -> dict:
    """Payload whose only edge points at a node that does not exist."""
    payload = dict(valid_payload)
    payload["edges"] = [dict(valid_payload["edges"][0], targetNodeId="n_missing")]
    return payload


# ============================================================================
# Collaborator Fakes
# ============================================================================

class FakeAssistant:
    """Scripted AI collaborator.

    Each queued item is returned in order (the last one repeats); an
    Exception item is raised instead. ``gate`` holds generate() until set.
    """

    def __init__(self, replies=None, payloads=None, gate: Optional[asyncio.Event] = None):
        self.replies = list(replies or ["I understand: a customer checks out. Approve?"])
        self.payloads = list(payloads or [])
        self.gate = gate
        self.reply_calls: list[list] = []
        self.generate_calls: list[list] = []

    @staticmethod
    def _next(queue):
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def reply(self, messages):
        self.reply_calls.append(list(messages))
        return self._next(self.replies)

    async def generate(self, messages):
        self.generate_calls.append(list(messages))
        if self.gate is not None:
            await self.gate.wait()
        return self._next(self.payloads)


class FlakyStore(InMemoryDiagramStore):
    """In-memory store whose first ``failures`` saves raise PersistenceError."""

    def __init__(self, failures: int, user_id: str = "local"):
        super().__init__(user_id=user_id)
        self.failures = failures
        self.attempts = 0

    async def save(self, diagram):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise PersistenceError("disk unavailable")
        await super().save(diagram)


class GatedStore(InMemoryDiagramStore):
    """In-memory store that blocks every save until ``gate`` is set."""

    def __init__(self, user_id: str = "local"):
        super().__init__(user_id=user_id)
        self.gate = asyncio.Event()
        self.saved: list[Diagram] = []
        self.active = 0
        self.max_active = 0

    async def save(self, diagram):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await self.gate.wait()
            await super().save(diagram)
            self.saved.append(diagram)
        finally:
            self.active -= 1


class ExplodingStore(InMemoryDiagramStore):
    """In-memory store whose saves always raise ``error``."""

    def __init__(self, error: Exception, user_id: str = "local"):
        super().__init__(user_id=user_id)
        self.error = error
        self.attempts = 0

    async def save(self, diagram):
        self.attempts += 1
        raise self.error
