"""
Pipeline Definitions - Multi-step plans for compound requests.

A compound request ("change the lighting, reframe, then upscale") becomes an
ordered StepPlan of 2-4 operations. Plans come either straight from a
semantic `multi_step` decision or from splitting the message into clauses and
matching each clause. Known chains live in a registry; chains without explicit
order words are ordered by the registry or by operation precedence.
"""

from typing import Dict, List, Optional
from enum import Enum
import re
import logging

from intent_engine.intent_classifier import apply_composition_workflow
from intent_engine.models import (
    DecisionSource,
    MediaType,
    Operation,
    RoleAssignment,
    StepPlan,
    VIDEO_OUTPUT_OPERATIONS,
    WorkflowDecision,
)
from intent_engine.pattern_matching import MatchContext, match_rules


logger = logging.getLogger(__name__)

MAX_PLAN_STEPS = 4


class PipelineType(str, Enum):
    """Pipeline categories"""
    IMAGE_EDIT = "image_edit"
    COMPOSE_AND_REFINE = "compose_and_refine"
    VIDEO = "video"


class Pipeline:
    """Represents a known multi-step chain"""

    def __init__(
        self,
        name: str,
        operations: List[Operation],
        pipeline_type: PipelineType,
        description: str = "",
        priority: int = 0,
    ):
        self.name = name
        self.operations = operations
        self.pipeline_type = pipeline_type
        self.description = description
        self.priority = priority

    def __repr__(self):
        return f"Pipeline({self.name}: {' → '.join(op.value for op in self.operations)})"


class PipelineRegistry:
    """Registry of known chains"""

    pipelines: List[Pipeline] = []

    @classmethod
    def register(cls, pipeline: Pipeline):
        """Register a pipeline"""
        cls.pipelines.append(pipeline)
        logger.debug(f"[PIPELINE REGISTERED] {pipeline.name}")

    @classmethod
    def find_pipeline(cls, operations: List[Operation]) -> Optional[Pipeline]:
        """Highest-priority pipeline with exactly these operations in this order."""
        for pipeline in sorted(cls.pipelines, key=lambda p: p.priority, reverse=True):
            if pipeline.operations == list(operations):
                logger.info(f"[PIPELINE MATCHED] {pipeline.name}")
                return pipeline
        return None

    @classmethod
    def find_unordered(cls, operations: List[Operation]) -> Optional[Pipeline]:
        """Highest-priority pipeline with the same set of operations, any order."""
        wanted = sorted(op.value for op in operations)
        for pipeline in sorted(cls.pipelines, key=lambda p: p.priority, reverse=True):
            if sorted(op.value for op in pipeline.operations) == wanted:
                logger.info(f"[PIPELINE MATCHED] {pipeline.name} (reordered)")
                return pipeline
        return None


# ============================================
# KNOWN CHAINS
# ============================================

PipelineRegistry.register(Pipeline(
    name="Upscale & Reframe",
    operations=[Operation.UPSCALE, Operation.REFRAME],
    pipeline_type=PipelineType.IMAGE_EDIT,
    description="Upscale, then change aspect ratio",
    priority=10,
))
PipelineRegistry.register(Pipeline(
    name="Lighting, Reframe & Upscale",
    operations=[Operation.LIGHTING, Operation.REFRAME, Operation.UPSCALE],
    pipeline_type=PipelineType.IMAGE_EDIT,
    description="Relight, reframe, then upscale the final frame",
    priority=10,
))
PipelineRegistry.register(Pipeline(
    name="Remove Background & Scene",
    operations=[Operation.REMOVE_BACKGROUND, Operation.SCENE_COMPOSITION],
    pipeline_type=PipelineType.IMAGE_EDIT,
    description="Cut the product out and place it in a scene",
    priority=9,
))
PipelineRegistry.register(Pipeline(
    name="Design & Upscale",
    operations=[Operation.COMPOSE, Operation.UPSCALE],
    pipeline_type=PipelineType.COMPOSE_AND_REFINE,
    description="Create a design, then upscale it",
    priority=10,
))
PipelineRegistry.register(Pipeline(
    name="Design & Reframe",
    operations=[Operation.COMPOSE, Operation.REFRAME],
    pipeline_type=PipelineType.COMPOSE_AND_REFINE,
    description="Create a design, then reframe it",
    priority=8,
))
PipelineRegistry.register(Pipeline(
    name="Design & Animate",
    operations=[Operation.COMPOSE, Operation.CREATE_VIDEO],
    pipeline_type=PipelineType.VIDEO,
    description="Create a design, then animate it",
    priority=8,
))
PipelineRegistry.register(Pipeline(
    name="Upscale & Analyze",
    operations=[Operation.UPSCALE, Operation.ANALYZE],
    pipeline_type=PipelineType.IMAGE_EDIT,
    description="Upscale, then describe the result",
    priority=6,
))
PipelineRegistry.register(Pipeline(
    name="Animate & Add Sound",
    operations=[Operation.CREATE_VIDEO, Operation.VIDEO_SOUND],
    pipeline_type=PipelineType.VIDEO,
    description="Animate an image, then add a soundtrack",
    priority=9,
))
PipelineRegistry.register(Pipeline(
    name="Animate & Upscale Video",
    operations=[Operation.CREATE_VIDEO, Operation.VIDEO_UPSCALE],
    pipeline_type=PipelineType.VIDEO,
    description="Animate an image, then upscale the video",
    priority=9,
))


# Fallback ordering for chains the registry doesn't know
OPERATION_PRECEDENCE: Dict[Operation, int] = {
    Operation.ENHANCE_PROMPT: 0,
    Operation.COMPOSE: 1,
    Operation.FLOW_DESIGN: 1,
    Operation.REMOVE_BACKGROUND: 2,
    Operation.OBJECT_REMOVAL: 3,
    Operation.LIGHTING: 4,
    Operation.SCENE_COMPOSITION: 5,
    Operation.MIRROR_MAGIC: 6,
    Operation.REFRAME: 7,
    Operation.ZOOM_SEQUENCE: 8,
    Operation.UPSCALE: 9,
    Operation.CLARITY_UPSCALE: 9,
    Operation.PAIRING: 10,
    Operation.ANALYZE: 11,
    Operation.CREATE_VIDEO: 12,
    Operation.VIDEO_REFRAME: 13,
    Operation.VIDEO_OUTPAINT: 14,
    Operation.VIDEO_UPSCALE: 15,
    Operation.VIDEO_SOUND: 16,
    Operation.GENERATE_TITLE: 17,
}

# Operations that don't consume the previous step's media
NON_MEDIA_OPERATIONS = {Operation.ENHANCE_PROMPT, Operation.GENERATE_TITLE}

# Operations whose output is text only
TEXT_OUTPUT_OPERATIONS = NON_MEDIA_OPERATIONS | {Operation.ANALYZE}

# Text outputs that can stand in for a composition prompt
PROMPT_SOURCE_OPERATIONS = {Operation.ENHANCE_PROMPT, Operation.ANALYZE}


def feeds_media(previous: Operation, current: Operation) -> bool:
    """The current step works on the media the previous step produced."""
    return previous not in TEXT_OUTPUT_OPERATIONS and current not in NON_MEDIA_OPERATIONS


def feeds_prompt(previous: Operation, current: Operation) -> bool:
    """The previous step's text becomes the current composition prompt."""
    return previous in PROMPT_SOURCE_OPERATIONS and current == Operation.COMPOSE


# ============================================
# CLAUSE SPLITTING
# ============================================

RE_CLAUSE_SPLIT = re.compile(
    r'\s*(?:,\s*)?\b(?:and then|then|after that|afterwards|followed by|finally|next)\b\s*'
    r'|\s*(?:->|→)\s*|\s*[,;]\s*(?:and\s+)?|\s+\band\b\s+',
    re.IGNORECASE,
)
RE_ORDER_WORDS = re.compile(r'\b(?:then|after that|afterwards|followed by|finally|next)\b|->|→', re.IGNORECASE)


def split_clauses(message: str) -> List[str]:
    return [clause.strip() for clause in RE_CLAUSE_SPLIT.split(message or "") if clause and clause.strip()]


class StepPlanner:
    """Builds StepPlans from decisions and compound messages"""

    def detect_compound(self, message: str, match_context: MatchContext) -> List[WorkflowDecision]:
        """Per-clause operations of a compound request ([] when the request is simple)."""
        clauses = split_clauses(message)
        if len(clauses) < 2:
            return []

        subject = match_context.subject_media
        steps: List[WorkflowDecision] = []
        for clause in clauses:
            rule = match_rules(clause, subject)
            if rule is None:
                continue
            if steps and steps[-1].operation == rule.operation:
                continue
            steps.append(WorkflowDecision(
                operation=rule.operation,
                confidence=rule.confidence,
                parameters=rule.extract_params(clause),
                requires_files=rule.requires_media,
                explanation=f"Step from clause '{clause}'",
                source=DecisionSource.PLANNER,
            ))
            if rule.operation in VIDEO_OUTPUT_OPERATIONS:
                subject = MediaType.VIDEO

        if len(steps) < 2:
            return []
        return steps

    @staticmethod
    def _order(steps: List[WorkflowDecision], message: str) -> List[WorkflowDecision]:
        """Keep the user's order when they gave one, otherwise registry or precedence order."""
        if RE_ORDER_WORDS.search(message or ""):
            return steps
        operations = [s.operation for s in steps]
        if PipelineRegistry.find_pipeline(operations):
            return steps
        pipeline = PipelineRegistry.find_unordered(operations)
        if pipeline:
            by_op = {s.operation: s for s in steps}
            return [by_op[op] for op in pipeline.operations]
        return sorted(steps, key=lambda s: OPERATION_PRECEDENCE.get(s.operation, 99))

    @staticmethod
    def _from_multi_step(decision: WorkflowDecision) -> List[WorkflowDecision]:
        steps = []
        for raw in decision.parameters.get("steps", []):
            operation = Operation(raw["operation"])
            steps.append(WorkflowDecision(
                operation=operation,
                confidence=decision.confidence,
                parameters=dict(raw.get("parameters") or {}),
                requires_files=operation not in NON_MEDIA_OPERATIONS,
                explanation=decision.explanation,
                source=DecisionSource.PLANNER,
            ))
        return steps

    def plan(
        self,
        decision: WorkflowDecision,
        message: str,
        match_context: MatchContext,
        assignment: Optional[RoleAssignment] = None,
    ) -> StepPlan:
        """
        Build the plan for a decision, expanding compound requests.

        When an assignment is given, composition steps get their workflow from
        the decision table (raises UnsupportedCombinationError).
        """
        if decision.operation == Operation.MULTI_STEP:
            steps = self._from_multi_step(decision)
        else:
            steps = self.detect_compound(message, match_context)
            detected = {s.operation for s in steps}
            if steps and decision.source == DecisionSource.SEMANTIC and decision.operation not in detected:
                logger.info("[PLAN] Clause split disagrees with semantic decision, keeping single step")
                steps = []
            if steps:
                steps = self._order(steps, message)
            else:
                steps = [decision]

        if len(steps) > MAX_PLAN_STEPS:
            logger.warning(f"[PLAN] {len(steps)} steps requested, truncating to {MAX_PLAN_STEPS}")
            steps = steps[:MAX_PLAN_STEPS]

        links = [
            feeds_media(previous.operation, current.operation) or feeds_prompt(previous.operation, current.operation)
            for previous, current in zip(steps, steps[1:])
        ]
        context_chain = any(links)
        if decision.operation == Operation.MULTI_STEP and "context_chain" in decision.parameters:
            context_chain = bool(decision.parameters["context_chain"]) and context_chain

        if assignment is not None:
            steps = [
                apply_composition_workflow(
                    step,
                    assignment,
                    message,
                    product_from_chain=context_chain and index > 0
                    and feeds_media(steps[index - 1].operation, step.operation),
                ) if step.operation == Operation.COMPOSE else step
                for index, step in enumerate(steps)
            ]

        plan = StepPlan(steps=tuple(steps), sequential=True, context_chain=context_chain)
        logger.info(
            f"[PLAN] {' → '.join(s.operation.value for s in plan.steps)} (context_chain={plan.context_chain})"
        )
        return plan
