"""
Hybrid Intent Classifier - Heuristics first, LLM when it matters.

Flow:
1. Table-driven heuristic match
2. Confident, bypass-safe, simple request → use the heuristic result
3. Otherwise ask the semantic classifier
4. Semantic failure or timeout → fall back to the heuristic result

Composition decisions additionally get their workflow from the decision
table once roles are known.
"""

from typing import Optional
import asyncio
import logging

from intent_engine.config import settings
from intent_engine.error_handler import ClassificationError
from intent_engine.models import (
    DecisionSource,
    Operation,
    Role,
    RoleAssignment,
    WorkflowDecision,
)
from intent_engine.pattern_matching import (
    HeuristicCandidate,
    MatchContext,
    is_complex,
    match,
)
from intent_engine.semantic_classifier import ClassificationContext, SemanticClassifier
from intent_engine.workflow_table import decide_workflow, generation_prompt


logger = logging.getLogger(__name__)


def candidate_to_decision(candidate: HeuristicCandidate, source: DecisionSource) -> WorkflowDecision:
    return WorkflowDecision(
        operation=candidate.operation,
        confidence=candidate.confidence,
        parameters=dict(candidate.parameters),
        requires_files=candidate.requires_files,
        explanation=candidate.explanation,
        source=source,
    )


def should_bypass(candidate: HeuristicCandidate, message: str) -> bool:
    """A heuristic match may skip the LLM only when it is confident, safe and simple."""
    return (
        candidate.confidence >= settings.heuristic_bypass_confidence
        and candidate.safe_to_bypass
        and not is_complex(message)
    )


def apply_composition_workflow(
    decision: WorkflowDecision,
    assignment: RoleAssignment,
    message: str,
    product_from_chain: bool = False,
) -> WorkflowDecision:
    """
    Attach the composition workflow chosen by the decision table.

    A chained composition step gets its product from the previous step.

    Raises:
        UnsupportedCombinationError: the roles/text combination has no workflow
    """
    text = decision.parameters.get("prompt") or message or ""
    workflow = decide_workflow(
        product_from_chain or assignment.is_filled(Role.PRODUCT),
        assignment.is_filled(Role.DESIGN),
        assignment.is_filled(Role.COLOR),
        bool(text.strip()),
    )
    parameters = dict(decision.parameters)
    parameters["workflow_type"] = workflow.value
    parameters["prompt"] = generation_prompt(workflow, text)
    return decision.model_copy(update={"workflow_type": workflow, "parameters": parameters})


class IntentClassifier:
    """Combines the heuristic matcher with the semantic classifier"""

    def __init__(self, semantic: Optional[SemanticClassifier] = None, use_semantic: Optional[bool] = None):
        enabled = settings.enable_semantic_classifier if use_semantic is None else use_semantic
        if semantic is None and enabled:
            semantic = SemanticClassifier()
        self.semantic = semantic if enabled else None

    async def classify(self, context: ClassificationContext, match_context: MatchContext) -> WorkflowDecision:
        candidate = match(match_context)

        if should_bypass(candidate, context.message):
            logger.info(f"[CLASSIFY] Heuristic bypass → {candidate.operation.value}")
            return candidate_to_decision(candidate, DecisionSource.HEURISTIC)

        if self.semantic is None:
            logger.info(f"[CLASSIFY] Semantic classifier disabled → {candidate.operation.value}")
            return candidate_to_decision(candidate, DecisionSource.HEURISTIC_FALLBACK)

        try:
            decision = await asyncio.wait_for(
                asyncio.to_thread(self.semantic.classify, context),
                timeout=settings.classifier_timeout_seconds,
            )
        except (ClassificationError, asyncio.TimeoutError) as exc:
            logger.warning(f"[CLASSIFY] Semantic classification failed ({exc}), using heuristic {candidate.operation.value}")
            return candidate_to_decision(candidate, DecisionSource.HEURISTIC_FALLBACK)

        if decision.operation == Operation.CONVERSATION and context.has_media:
            # Uploaded media with a chatty message still means "do something with these"
            logger.info("[CLASSIFY] Conversation with uploads, using heuristic candidate")
            return candidate_to_decision(candidate, DecisionSource.HEURISTIC_FALLBACK)

        logger.info(f"[CLASSIFY] Semantic → {decision.operation.value}")
        return decision
