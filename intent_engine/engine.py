"""
Intent Engine - Orchestrates one request end to end.

1. Validate the request
2. Normalize media and resolve references concurrently
3. Assign roles, classify, plan
4. Execute the plan step by step
5. Synthesize the response and record the turns
"""

from typing import Dict, List, Optional, Tuple
import asyncio
import logging
import time
import uuid

from intent_engine.config import settings
from intent_engine.error_handler import EngineError, NormalizationError, ValidationError
from intent_engine.generation_adapter import GenerationAdapter
from intent_engine.history import ConversationHistoryStore, InMemoryHistoryStore
from intent_engine.input_normalizer import InputNormalizer, NormalizationOutcome
from intent_engine.intent_classifier import IntentClassifier
from intent_engine.models import (
    ConversationTurn,
    MediaType,
    Operation,
    OrchestrateRequest,
    OrchestrateResponse,
    ResolvedReference,
    SourceKind,
    StepStatus,
    TurnRole,
    VIDEO_INPUT_OPERATIONS,
)
from intent_engine.pattern_matching import MatchContext, detect_media_preference, match_rules
from intent_engine.pipeline_definitions import NON_MEDIA_OPERATIONS, StepPlanner
from intent_engine.reference_resolver import ReferenceChainResolver, has_back_reference
from intent_engine.response_synthesizer import ResponseSynthesizer
from intent_engine.role_assigner import assign_roles, build_role_context
from intent_engine.semantic_classifier import ClassificationContext
from intent_engine.step_executor import StepExecutor
from intent_engine.storage import LocalObjectStorage, ObjectStorage


logger = logging.getLogger(__name__)

EMPTY_REQUEST_MESSAGE = "Either a message or images must be provided"

# Operations that can run without any media
MEDIA_FREE_OPERATIONS = NON_MEDIA_OPERATIONS | {Operation.COMPOSE, Operation.FLOW_DESIGN, Operation.CONVERSATION}


def validate_request(request: OrchestrateRequest) -> None:
    """Raises ValidationError for requests with neither text nor media."""
    if not (request.message or "").strip() and not request.media_inputs:
        raise ValidationError(EMPTY_REQUEST_MESSAGE)


def wants_fresh_generation(message: str) -> bool:
    lowered = (message or "").lower()
    return any(phrase in lowered for phrase in settings.fresh_generation_phrases)


class IntentEngine:
    """Wires the pipeline components together"""

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        history: Optional[ConversationHistoryStore] = None,
        classifier: Optional[IntentClassifier] = None,
        adapter: Optional[GenerationAdapter] = None,
        normalizer: Optional[InputNormalizer] = None,
        resolver: Optional[ReferenceChainResolver] = None,
        planner: Optional[StepPlanner] = None,
        synthesizer: Optional[ResponseSynthesizer] = None,
    ):
        self.storage = storage or LocalObjectStorage()
        self.history = history or InMemoryHistoryStore()
        self.normalizer = normalizer or InputNormalizer(self.storage)
        self.resolver = resolver or ReferenceChainResolver()
        self.classifier = classifier or IntentClassifier()
        self.planner = planner or StepPlanner()
        self.executor = StepExecutor(adapter or GenerationAdapter(), self.storage)
        self.synthesizer = synthesizer or ResponseSynthesizer()

    # ------------------------------------------
    # Reference selection
    # ------------------------------------------

    def _reference_wanted(self, request: OrchestrateRequest, message: str) -> bool:
        """
        Explicit pointers are always followed. The implicit latest result is only
        used for media-less requests that point back or name a media operation.
        """
        if request.explicit_reference is not None:
            return True
        if request.media_inputs or wants_fresh_generation(message):
            return False
        if has_back_reference(message):
            return True
        rule = match_rules(message, detect_media_preference(message))
        return rule is not None and rule.operation not in MEDIA_FREE_OPERATIONS

    async def _resolve(self, history: List[ConversationTurn], request: OrchestrateRequest, message: str) -> ResolvedReference:
        if not history or not self._reference_wanted(request, message):
            return ResolvedReference()
        return await asyncio.to_thread(self.resolver.resolve, history, request.explicit_reference, message)

    # ------------------------------------------
    # Context building
    # ------------------------------------------

    @staticmethod
    def _subject_media(outcome: NormalizationOutcome, reference: ResolvedReference, message: str) -> Optional[MediaType]:
        if outcome.normalized:
            if any(n.artifact.media_type == MediaType.VIDEO for n in outcome.normalized):
                return MediaType.VIDEO
            return MediaType.IMAGE
        if reference.artifacts:
            return reference.artifacts[0].media_type
        return detect_media_preference(message)

    def _contexts(
        self,
        message: str,
        outcome: NormalizationOutcome,
        reference: ResolvedReference,
        history: List[ConversationTurn],
    ) -> Tuple[ClassificationContext, MatchContext]:
        presets: Dict[str, str] = {
            n.media_input.field_name_hint or "preset": str(n.media_input.raw_ref)
            for n in outcome.normalized
            if n.media_input.source_kind == SourceKind.PRESET
        }
        media_fields = [
            n.media_input.field_name_hint or n.media_input.source_kind.value
            for n in outcome.normalized
            if n.media_input.source_kind != SourceKind.PRESET
        ]
        recent = [(t.role.value, t.text) for t in history[-settings.history_context_turns:]]
        subject = self._subject_media(outcome, reference, message)

        classification_context = ClassificationContext(
            message=message,
            media_fields=media_fields,
            has_reference=not reference.is_empty,
            reference_trail=reference.text_trail,
            reference_media=reference.artifacts[0].media_type if reference.artifacts else None,
            recent_history=recent,
            presets=presets,
        )
        match_context = MatchContext(
            message=message,
            has_media=bool(outcome.normalized),
            has_reference=not reference.is_empty,
            subject_media=subject,
        )
        return classification_context, match_context

    # ------------------------------------------
    # History
    # ------------------------------------------

    async def _record(
        self,
        request: OrchestrateRequest,
        message: str,
        outcome: NormalizationOutcome,
        response: OrchestrateResponse,
    ) -> None:
        refs = []
        for item in outcome.normalized:
            if item.media_input.source_kind == SourceKind.PRESET:
                refs.append(f"{item.media_input.field_name_hint or 'preset'}={item.media_input.raw_ref}")
            else:
                refs.append(item.artifact.uri)

        now = time.time()
        reference_to = request.explicit_reference.id if request.explicit_reference else None
        await self.history.append(request.conversation_id, ConversationTurn(
            role=TurnRole.USER,
            text=message,
            timestamp=now,
            input_media_refs=refs,
            id=uuid.uuid4().hex,
            reference_to=reference_to,
        ))
        produced = [
            r.artifact for r in response.step_results
            if r.status == StepStatus.SUCCESS and r.artifact is not None
        ]
        await self.history.append(request.conversation_id, ConversationTurn(
            role=TurnRole.ASSISTANT,
            text=response.message,
            timestamp=now,
            produced_artifacts=produced,
            id=uuid.uuid4().hex,
        ))

    # ------------------------------------------
    # Entry point
    # ------------------------------------------

    async def handle(self, request: OrchestrateRequest) -> OrchestrateResponse:
        """Process one request. Terminal failures come back as error responses."""
        try:
            validate_request(request)
        except ValidationError as exc:
            return self.synthesizer.error(exc)

        message = (request.message or "").strip()
        history = await self.history.read(request.conversation_id)

        outcome, reference = await asyncio.gather(
            self.normalizer.normalize_all(request.media_inputs, request.conversation_id),
            self._resolve(history, request, message),
        )
        partial_failures = [str(f) for f in outcome.optional_failures]

        try:
            response = await self._run(request, message, history, outcome, reference, partial_failures)
        except EngineError as exc:
            logger.warning(f"[ENGINE] Request failed: {exc}")
            response = self.synthesizer.error(exc, partial_failures=partial_failures, resolved_reference=reference)

        await self._record(request, message, outcome, response)
        return response

    async def _run(
        self,
        request: OrchestrateRequest,
        message: str,
        history: List[ConversationTurn],
        outcome: NormalizationOutcome,
        reference: ResolvedReference,
        partial_failures: List[str],
    ) -> OrchestrateResponse:
        if outcome.required_failures:
            failure: NormalizationError = outcome.required_failures[0]
            return self.synthesizer.error(
                failure,
                partial_failures=[str(f) for f in outcome.failures],
                resolved_reference=reference,
            )

        role_context = build_role_context(outcome.normalized, reference, request.reference_mode, message)
        assignment = assign_roles(role_context)

        classification_context, match_context = self._contexts(message, outcome, reference, history)
        decision = await self.classifier.classify(classification_context, match_context)

        if decision.operation == Operation.CONVERSATION or decision.confidence <= settings.min_execution_confidence:
            logger.info(f"[ENGINE] Conversational reply ({decision.operation.value}, {decision.confidence:.2f})")
            return self.synthesizer.conversation(decision)

        plan = self.planner.plan(decision, message, match_context, assignment)
        first = plan.steps[0]
        if first.operation not in MEDIA_FREE_OPERATIONS and assignment.primary_artifact() is None:
            logger.info(f"[ENGINE] {first.operation.value} needs media, none available")
            return self.synthesizer.needs_files(decision)
        if first.operation in VIDEO_INPUT_OPERATIONS:
            subject = assignment.primary_artifact()
            if subject is not None and subject.media_type != MediaType.VIDEO:
                raise ValidationError(f"{first.operation.value} needs a video, got an image")

        results = await self.executor.execute(plan, assignment, request.conversation_id, stream=request.stream)
        return self.synthesizer.from_results(
            decision, plan, results, assignment, reference, partial_failures=partial_failures
        )
