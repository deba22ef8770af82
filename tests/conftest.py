"""Pytest fixtures and fakes for engine tests."""

import asyncio
from io import BytesIO
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from PIL import Image

from intent_engine.error_handler import BackendError
from intent_engine.models import ConversationTurn, Operation, StoredArtifact, TurnRole
from intent_engine.reference_resolver import classify_media_type


# ============================================
# FAKES
# ============================================

class MemoryStorage:
    """Object storage kept in a dict"""

    def __init__(self, delay: float = 0.0):
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.delay = delay

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        uri = f"mem://{path}"
        self.objects[uri] = (data, content_type)
        return uri

    async def get(self, uri: str) -> bytes:
        return self.objects[uri][0]


class FakeBackend:
    """Generation backend that records calls and replays scripted outcomes"""

    def __init__(self, outcomes: Optional[List[Any]] = None, default: Optional[Dict[str, Any]] = None):
        self.outcomes = list(outcomes or [])
        self.default = default or {"imageUrl": "https://cdn.example.com/out.png"}
        self.calls: List[Tuple[Operation, Dict[str, Any], Dict[str, str]]] = []

    async def invoke(self, operation: Operation, parameters: Dict[str, Any], media_refs: Dict[str, str]) -> Dict[str, Any]:
        self.calls.append((operation, dict(parameters), dict(media_refs)))
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeLLMClient:
    """Stands in for the Groq client: returns scripted message contents"""

    def __init__(self, contents: List[str]):
        self.contents = list(contents)
        self.requests: List[Dict[str, Any]] = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    def _create(self, **kwargs):
        self.requests.append(kwargs)
        content = self.contents.pop(0)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


# ============================================
# FIXTURES
# ============================================

def make_image_bytes(fmt: str = "PNG", size: Tuple[int, int] = (8, 8), mode: str = "RGB") -> bytes:
    out = BytesIO()
    Image.new(mode, size, color=(200, 30, 30) if mode == "RGB" else None).save(out, format=fmt)
    return out.getvalue()


def make_turn(
    role: TurnRole,
    text: str = "",
    timestamp: float = 0.0,
    artifacts: Optional[List[str]] = None,
    turn_id: Optional[str] = None,
    reference_to: Optional[str] = None,
    input_media_refs: Optional[List[str]] = None,
) -> ConversationTurn:
    return ConversationTurn(
        role=role,
        text=text,
        timestamp=timestamp,
        produced_artifacts=[
            StoredArtifact(uri=uri, media_type=classify_media_type(uri)) for uri in (artifacts or [])
        ],
        input_media_refs=input_media_refs or [],
        id=turn_id,
        reference_to=reference_to,
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest_asyncio.fixture
async def history_store():
    from intent_engine.history import InMemoryHistoryStore
    return InMemoryHistoryStore()


@pytest.fixture
def failing_backend_error() -> BackendError:
    return BackendError("backend exploded", operation="compose", status_code=500)
