"""
Tests for the Hybrid Intent Classifier

Tests cover:
1. Heuristic bypass for confident, simple requests
2. Semantic classification for everything else
3. Fallback to the heuristic on errors, bad output and timeouts
4. Composition workflow attachment
"""

import json
import time

import pytest

from intent_engine.error_handler import ClassificationError, UnsupportedCombinationError
from intent_engine.models import (
    DecisionSource,
    MediaType,
    Operation,
    RoleAssignment,
    RoleBinding,
    RoleSource,
    StoredArtifact,
    WorkflowDecision,
    WorkflowType,
)

from conftest import FakeLLMClient


class RecordingSemantic:
    """Semantic classifier stand-in"""

    def __init__(self, decision=None, error=None, delay=0.0):
        self.decision = decision
        self.error = error
        self.delay = delay
        self.calls = 0

    def classify(self, context):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.decision


def contexts(message, media_fields=None, has_reference=False, subject=None):
    from intent_engine.pattern_matching import MatchContext
    from intent_engine.semantic_classifier import ClassificationContext

    media_fields = media_fields or []
    return (
        ClassificationContext(message=message, media_fields=media_fields, has_reference=has_reference),
        MatchContext(message=message, has_media=bool(media_fields), has_reference=has_reference, subject_media=subject),
    )


def bound(uri="mem://x.png"):
    return RoleBinding(source=RoleSource.EXPLICIT_UPLOAD, artifact=StoredArtifact(uri=uri))


# ============================================
# BYPASS TESTS
# ============================================

class TestBypass:
    """When the LLM is skipped"""

    @pytest.mark.asyncio
    async def test_confident_simple_request_bypasses(self):
        """'make it bigger' with a reference never reaches the LLM"""
        from intent_engine.intent_classifier import IntentClassifier

        semantic = RecordingSemantic()
        decision = await IntentClassifier(semantic=semantic, use_semantic=True).classify(
            *contexts("make it bigger", has_reference=True, subject=MediaType.IMAGE)
        )

        assert decision.operation == Operation.UPSCALE
        assert decision.source == DecisionSource.HEURISTIC
        assert semantic.calls == 0

    @pytest.mark.asyncio
    async def test_greeting_bypasses(self):
        from intent_engine.intent_classifier import IntentClassifier

        semantic = RecordingSemantic()
        decision = await IntentClassifier(semantic=semantic, use_semantic=True).classify(*contexts("hello"))

        assert decision.operation == Operation.CONVERSATION
        assert semantic.calls == 0

    @pytest.mark.asyncio
    async def test_complex_request_goes_semantic(self):
        """Connector words force the semantic path"""
        from intent_engine.intent_classifier import IntentClassifier

        semantic = RecordingSemantic(decision=WorkflowDecision(
            operation=Operation.UPSCALE, confidence=0.9, source=DecisionSource.SEMANTIC
        ))
        decision = await IntentClassifier(semantic=semantic, use_semantic=True).classify(
            *contexts("upscale and then reframe it", has_reference=True, subject=MediaType.IMAGE)
        )

        assert semantic.calls == 1
        assert decision.source == DecisionSource.SEMANTIC

    @pytest.mark.asyncio
    async def test_disabled_semantic_uses_heuristic(self):
        from intent_engine.intent_classifier import IntentClassifier

        decision = await IntentClassifier(use_semantic=False).classify(*contexts("design a floral mug"))

        assert decision.operation == Operation.COMPOSE
        assert decision.source == DecisionSource.HEURISTIC_FALLBACK


# ============================================
# FALLBACK TESTS
# ============================================

class TestFallback:
    """Semantic failures never fail the request"""

    @pytest.mark.asyncio
    async def test_classification_error(self):
        from intent_engine.intent_classifier import IntentClassifier

        semantic = RecordingSemantic(error=ClassificationError("bad output"))
        decision = await IntentClassifier(semantic=semantic, use_semantic=True).classify(
            *contexts("design a floral mug")
        )

        assert decision.operation == Operation.COMPOSE
        assert decision.source == DecisionSource.HEURISTIC_FALLBACK

    @pytest.mark.asyncio
    async def test_malformed_llm_output_twice(self):
        """Real classifier, scripted client: two bad answers → heuristic"""
        from intent_engine.intent_classifier import IntentClassifier
        from intent_engine.semantic_classifier import SemanticClassifier

        client = FakeLLMClient(["garbage", "{still garbage"])
        decision = await IntentClassifier(semantic=SemanticClassifier(client=client), use_semantic=True).classify(
            *contexts("design a floral mug")
        )

        assert decision.source == DecisionSource.HEURISTIC_FALLBACK
        assert len(client.requests) == 2

    @pytest.mark.asyncio
    async def test_timeout(self, monkeypatch):
        from intent_engine.config import settings
        from intent_engine.intent_classifier import IntentClassifier

        monkeypatch.setattr(settings, "classifier_timeout_seconds", 0.05)
        semantic = RecordingSemantic(
            decision=WorkflowDecision(operation=Operation.ANALYZE, confidence=0.9), delay=0.3
        )
        decision = await IntentClassifier(semantic=semantic, use_semantic=True).classify(
            *contexts("design a floral mug")
        )

        assert decision.operation == Operation.COMPOSE
        assert decision.source == DecisionSource.HEURISTIC_FALLBACK

    @pytest.mark.asyncio
    async def test_conversation_with_uploads_uses_heuristic(self):
        """Uploads plus a chatty message still compose"""
        from intent_engine.intent_classifier import IntentClassifier

        client = FakeLLMClient([json.dumps({
            "intent": "chat", "confidence": 0.8, "endpoint": "none",
            "parameters": {}, "requiresFiles": False, "explanation": "greeting",
        })])
        from intent_engine.semantic_classifier import SemanticClassifier

        decision = await IntentClassifier(semantic=SemanticClassifier(client=client), use_semantic=True).classify(
            *contexts("here are my pictures", media_fields=["product_image", "design_image"])
        )

        assert decision.operation == Operation.COMPOSE
        assert decision.source == DecisionSource.HEURISTIC_FALLBACK


# ============================================
# COMPOSITION WORKFLOW TESTS
# ============================================

class TestCompositionWorkflow:
    """Decision table attachment"""

    def test_full_composition(self):
        from intent_engine.intent_classifier import apply_composition_workflow

        decision = WorkflowDecision(operation=Operation.COMPOSE, confidence=0.9)
        assignment = RoleAssignment(product=bound(), design=bound(), color=bound())
        result = apply_composition_workflow(decision, assignment, "")

        assert result.workflow_type == WorkflowType.FULL_COMPOSITION
        assert result.parameters["workflow_type"] == "full_composition"
        assert result.parameters["prompt"]

    def test_prompt_only(self):
        from intent_engine.intent_classifier import apply_composition_workflow

        decision = WorkflowDecision(operation=Operation.COMPOSE, parameters={"prompt": "a blue ceramic vase"})
        result = apply_composition_workflow(decision, RoleAssignment(), "a blue ceramic vase")

        assert result.workflow_type == WorkflowType.PROMPT_ONLY
        assert "a blue ceramic vase" in result.parameters["prompt"]

    def test_chained_product(self):
        """A chained step counts the previous output as product"""
        from intent_engine.intent_classifier import apply_composition_workflow

        decision = WorkflowDecision(operation=Operation.COMPOSE)
        result = apply_composition_workflow(decision, RoleAssignment(design=bound()), "", product_from_chain=True)

        assert result.workflow_type == WorkflowType.PRODUCT_DESIGN

    def test_unsupported(self):
        """Nothing at all has no workflow"""
        from intent_engine.intent_classifier import apply_composition_workflow

        with pytest.raises(UnsupportedCombinationError):
            apply_composition_workflow(WorkflowDecision(operation=Operation.COMPOSE), RoleAssignment(), "")
