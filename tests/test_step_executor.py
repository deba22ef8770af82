"""
Tests for the Step Executor

Tests cover:
1. Strict ordering and context chaining
2. Halt on the first failing step
3. Persistence of inline outputs and the persist-timeout fallback
4. Media fields sent to each backend
"""

import base64

import pytest

from intent_engine.error_handler import BackendError
from intent_engine.models import (
    MediaType,
    Operation,
    RoleAssignment,
    RoleBinding,
    RoleSource,
    StepPlan,
    StepStatus,
    StoredArtifact,
    WorkflowDecision,
)

from conftest import FakeBackend, MemoryStorage, make_image_bytes


SUBJECT = StoredArtifact(uri="mem://conv/input/subject.png")


def assignment_with_product(artifact=SUBJECT):
    return RoleAssignment(product=RoleBinding(source=RoleSource.EXPLICIT_UPLOAD, artifact=artifact))


def plan_of(*operations, context_chain=True):
    return StepPlan(
        steps=tuple(WorkflowDecision(operation=op, confidence=0.9) for op in operations),
        context_chain=context_chain,
    )


def make_executor(backend, storage=None):
    from intent_engine.generation_adapter import GenerationAdapter
    from intent_engine.step_executor import StepExecutor

    adapter = GenerationAdapter(default_backend=backend, composition_multimodal=backend, composition_text=backend)
    return StepExecutor(adapter, storage or MemoryStorage())


# ============================================
# SEQUENTIAL EXECUTION TESTS
# ============================================

class TestSequentialExecution:
    """Plans run in order, each step seeing the previous output"""

    @pytest.mark.asyncio
    async def test_chained_outputs_feed_next_step(self):
        """Step 2 receives step 1's artifact as its subject"""
        backend = FakeBackend(outcomes=[
            {"imageUrl": "https://cdn.example.com/lit.png"},
            {"imageUrl": "https://cdn.example.com/framed.png"},
        ])
        results = await make_executor(backend).execute(
            plan_of(Operation.LIGHTING, Operation.REFRAME), assignment_with_product(), "c1"
        )

        assert [r.status for r in results] == [StepStatus.SUCCESS, StepStatus.SUCCESS]
        assert backend.calls[0][2] == {"image": SUBJECT.uri}
        assert backend.calls[1][2] == {"image": "https://cdn.example.com/lit.png"}
        assert results[1].artifact.uri == "https://cdn.example.com/framed.png"

    @pytest.mark.asyncio
    async def test_failure_halts_remaining_steps(self):
        """Step 2 of 3 fails → exactly 2 results, step 3 never invoked"""
        backend = FakeBackend(outcomes=[
            {"imageUrl": "https://cdn.example.com/one.png"},
            BackendError("reframe down", operation="reframe"),
            {"imageUrl": "https://cdn.example.com/three.png"},
        ])
        results = await make_executor(backend).execute(
            plan_of(Operation.LIGHTING, Operation.REFRAME, Operation.UPSCALE), assignment_with_product(), "c1"
        )

        assert len(results) == 2
        assert results[0].status == StepStatus.SUCCESS
        assert results[1].status == StepStatus.ERROR
        assert "reframe down" in results[1].error
        assert [call[0] for call in backend.calls] == [Operation.LIGHTING, Operation.REFRAME]

    @pytest.mark.asyncio
    async def test_chain_without_artifact_stops(self):
        """A media step whose predecessor left no media is never run or reported"""
        backend = FakeBackend(outcomes=[{"analysis": "upscale skipped"}])
        results = await make_executor(backend).execute(
            plan_of(Operation.UPSCALE, Operation.REFRAME), assignment_with_product(), "c1"
        )

        assert len(results) == 1
        assert results[0].status == StepStatus.SUCCESS
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_text_step_does_not_feed_media(self):
        """After an analysis, the next media step works on the original subject"""
        backend = FakeBackend(outcomes=[{"analysis": "a mug"}])
        results = await make_executor(backend).execute(
            plan_of(Operation.ANALYZE, Operation.UPSCALE), assignment_with_product(), "c1"
        )

        assert [r.status for r in results] == [StepStatus.SUCCESS, StepStatus.SUCCESS]
        assert backend.calls[1][2] == {"image": SUBJECT.uri}

    @pytest.mark.asyncio
    async def test_enhanced_prompt_feeds_composition(self):
        """An enhanced prompt becomes the next composition's prompt"""
        backend = FakeBackend(outcomes=[
            {"enhancedPrompt": "A sculpted ceramic vase"},
            {"imageUrl": "https://cdn.example.com/vase.png"},
        ])
        plan = StepPlan(
            steps=(
                WorkflowDecision(operation=Operation.ENHANCE_PROMPT, parameters={"prompt": "a vase"}),
                WorkflowDecision(operation=Operation.COMPOSE, parameters={"prompt": "a vase"}),
            ),
            context_chain=True,
        )
        results = await make_executor(backend).execute(plan, RoleAssignment(), "c1")

        assert [r.status for r in results] == [StepStatus.SUCCESS, StepStatus.SUCCESS]
        assert backend.calls[1][1]["prompt"] == "A sculpted ceramic vase"
        assert backend.calls[1][2] == {}
        assert plan.steps[1].parameters["prompt"] == "a vase"

    @pytest.mark.asyncio
    async def test_unchained_steps_use_original_subject(self):
        """Without context chaining every step gets the assigned subject"""
        backend = FakeBackend()
        await make_executor(backend).execute(
            plan_of(Operation.UPSCALE, Operation.GENERATE_TITLE, context_chain=False),
            assignment_with_product(),
            "c1",
        )
        assert backend.calls[1][2] == {"image": SUBJECT.uri}

    @pytest.mark.asyncio
    async def test_video_subject_sent_as_video(self):
        """A chained video output is passed under the video field"""
        backend = FakeBackend(outcomes=[
            {"video_url": "https://cdn.example.com/clip.mp4"},
            {"video_url": "https://cdn.example.com/clip_hd.mp4"},
        ])
        results = await make_executor(backend).execute(
            plan_of(Operation.CREATE_VIDEO, Operation.VIDEO_UPSCALE), assignment_with_product(), "c1"
        )

        assert backend.calls[1][2] == {"video": "https://cdn.example.com/clip.mp4"}
        assert results[-1].artifact.media_type == MediaType.VIDEO


# ============================================
# COMPOSE MEDIA TESTS
# ============================================

class TestComposeMedia:
    """Composition receives role images"""

    def test_role_fields(self):
        """Each filled role is sent under its own field"""
        from intent_engine.step_executor import media_refs_for

        assignment = RoleAssignment(
            product=RoleBinding(source=RoleSource.EXPLICIT_UPLOAD, artifact=StoredArtifact(uri="mem://p.png")),
            color=RoleBinding(source=RoleSource.RESOLVED_REFERENCE, artifact=StoredArtifact(uri="mem://c.png")),
        )
        step = WorkflowDecision(operation=Operation.COMPOSE)

        assert media_refs_for(step, assignment, None) == {"product_image": "mem://p.png", "color_image": "mem://c.png"}

    def test_chained_output_replaces_product(self):
        """A chained composition uses the previous output as product"""
        from intent_engine.step_executor import media_refs_for

        step = WorkflowDecision(operation=Operation.COMPOSE)
        refs = media_refs_for(step, assignment_with_product(), StoredArtifact(uri="mem://prev.png"))

        assert refs == {"product_image": "mem://prev.png"}


# ============================================
# PERSISTENCE TESTS
# ============================================

class TestPersistence:
    """Inline outputs are stored before the next step"""

    @pytest.mark.asyncio
    async def test_inline_output_persisted(self):
        """Data URL output lands in storage under the conversation's output path"""
        raw = make_image_bytes("PNG")
        backend = FakeBackend(outcomes=[{"data_url": "data:image/png;base64," + base64.b64encode(raw).decode()}])
        storage = MemoryStorage()

        results = await make_executor(backend, storage).execute(
            plan_of(Operation.UPSCALE), assignment_with_product(), "conv-9"
        )

        uri = results[0].artifact.uri
        assert uri.startswith("mem://conv-9/output/")
        assert uri.endswith("step1_upscale.png")
        assert storage.objects[uri][0] == raw
        assert results[0].artifact.size_bytes == len(raw)

    @pytest.mark.asyncio
    async def test_persist_timeout_keeps_backend_reference(self, monkeypatch):
        """A slow store does not fail the step: the backend's reference is used"""
        from intent_engine.config import settings

        monkeypatch.setattr(settings, "persist_timeout_seconds", 0.01)
        data_url = "data:image/png;base64," + base64.b64encode(make_image_bytes("PNG")).decode()
        backend = FakeBackend(outcomes=[{"data_url": data_url}])

        results = await make_executor(backend, MemoryStorage(delay=1.0)).execute(
            plan_of(Operation.UPSCALE), assignment_with_product(), "c1"
        )

        assert results[0].status == StepStatus.SUCCESS
        assert results[0].artifact.uri == data_url

    @pytest.mark.asyncio
    async def test_remote_output_not_copied(self):
        """Remote URLs are kept as-is"""
        storage = MemoryStorage()
        results = await make_executor(FakeBackend(), storage).execute(
            plan_of(Operation.UPSCALE), assignment_with_product(), "c1"
        )

        assert results[0].artifact.uri == "https://cdn.example.com/out.png"
        assert storage.objects == {}
