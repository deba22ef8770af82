"""
Tests for Step Planning

Tests cover:
1. Single-step plans
2. Compound requests split into ordered steps
3. Registry and precedence ordering
4. Semantic multi_step plans, truncation and context chaining
"""

import pytest

from intent_engine.models import (
    DecisionSource,
    MediaType,
    Operation,
    RoleAssignment,
    WorkflowDecision,
    WorkflowType,
)


def image_context(message):
    from intent_engine.pattern_matching import MatchContext

    return MatchContext(message=message, has_media=True, subject_media=MediaType.IMAGE)


def heuristic(operation):
    return WorkflowDecision(operation=operation, confidence=0.95, source=DecisionSource.HEURISTIC)


# ============================================
# CLAUSE SPLITTING TESTS
# ============================================

class TestClauseSplitting:
    """Connector words split a request"""

    def test_split(self):
        from intent_engine.pipeline_definitions import split_clauses

        assert split_clauses("change the lighting, reframe it, then upscale") == [
            "change the lighting", "reframe it", "upscale",
        ]
        assert split_clauses("upscale -> reframe") == ["upscale", "reframe"]
        assert split_clauses("make it bigger") == ["make it bigger"]


# ============================================
# STEP PLANNER TESTS
# ============================================

class TestStepPlanner:
    """Plans from decisions and messages"""

    def test_single_step(self):
        from intent_engine.pipeline_definitions import StepPlanner

        plan = StepPlanner().plan(heuristic(Operation.UPSCALE), "make it bigger", image_context("make it bigger"))

        assert [s.operation for s in plan.steps] == [Operation.UPSCALE]
        assert not plan.is_multi_step
        assert not plan.context_chain

    def test_ordered_compound(self):
        """Explicit order words keep the user's order"""
        from intent_engine.pipeline_definitions import StepPlanner

        message = "change the lighting to sunset, reframe to landscape, then upscale"
        plan = StepPlanner().plan(heuristic(Operation.LIGHTING), message, image_context(message))

        assert [s.operation for s in plan.steps] == [Operation.LIGHTING, Operation.REFRAME, Operation.UPSCALE]
        assert plan.steps[0].parameters == {"timeOfDay": "sunset"}
        assert plan.steps[1].parameters == {"imageSize": "landscape"}
        assert plan.context_chain
        assert all(s.source == DecisionSource.PLANNER for s in plan.steps)

    def test_registry_order_without_order_words(self):
        """A known chain fixes the order"""
        from intent_engine.pipeline_definitions import StepPlanner

        message = "reframe and upscale"
        plan = StepPlanner().plan(heuristic(Operation.UPSCALE), message, image_context(message))

        assert [s.operation for s in plan.steps] == [Operation.UPSCALE, Operation.REFRAME]

    def test_precedence_order_for_unknown_chain(self):
        """Unknown chains follow operation precedence"""
        from intent_engine.pipeline_definitions import StepPlanner

        message = "upscale and remove the background"
        plan = StepPlanner().plan(heuristic(Operation.REMOVE_BACKGROUND), message, image_context(message))

        assert [s.operation for s in plan.steps] == [Operation.REMOVE_BACKGROUND, Operation.UPSCALE]

    def test_video_subject_carries_forward(self):
        """After animating, sound applies to the new video"""
        from intent_engine.pipeline_definitions import StepPlanner

        message = "animate it and add sound"
        plan = StepPlanner().plan(heuristic(Operation.CREATE_VIDEO), message, image_context(message))

        assert [s.operation for s in plan.steps] == [Operation.CREATE_VIDEO, Operation.VIDEO_SOUND]

    def test_semantic_disagreement_keeps_single_step(self):
        """Clause split that doesn't contain the semantic choice is ignored"""
        from intent_engine.pipeline_definitions import StepPlanner

        decision = WorkflowDecision(operation=Operation.ANALYZE, confidence=0.9, source=DecisionSource.SEMANTIC)
        plan = StepPlanner().plan(decision, "upscale and reframe", image_context("upscale and reframe"))

        assert [s.operation for s in plan.steps] == [Operation.ANALYZE]

    def test_multi_step_truncated(self):
        """At most four steps run"""
        from intent_engine.pipeline_definitions import MAX_PLAN_STEPS, StepPlanner

        steps = [{"operation": op, "parameters": {}} for op in
                 ("lighting", "reframe", "upscale", "mirror_magic", "analyze")]
        decision = WorkflowDecision(operation=Operation.MULTI_STEP, confidence=0.9, parameters={"steps": steps})
        plan = StepPlanner().plan(decision, "do everything", image_context("do everything"))

        assert len(plan.steps) == MAX_PLAN_STEPS
        assert plan.steps[-1].operation == Operation.MIRROR_MAGIC

    def test_multi_step_context_chain_override(self):
        from intent_engine.pipeline_definitions import StepPlanner

        decision = WorkflowDecision(
            operation=Operation.MULTI_STEP,
            confidence=0.9,
            parameters={
                "steps": [{"operation": "upscale"}, {"operation": "reframe", "parameters": {"imageSize": "portrait"}}],
                "context_chain": False,
            },
        )
        plan = StepPlanner().plan(decision, "x", image_context("x"))

        assert not plan.context_chain
        assert plan.steps[1].parameters == {"imageSize": "portrait"}

    def test_title_step_does_not_chain(self):
        """Prompt tools never consume the previous media"""
        from intent_engine.pipeline_definitions import StepPlanner

        decision = WorkflowDecision(
            operation=Operation.MULTI_STEP,
            confidence=0.9,
            parameters={"steps": [{"operation": "upscale"}, {"operation": "generate_title"}]},
        )
        plan = StepPlanner().plan(decision, "x", image_context("x"))

        assert not plan.context_chain

    def test_analysis_step_does_not_chain_media(self):
        """A text-only analysis never feeds the next media step"""
        from intent_engine.pipeline_definitions import StepPlanner

        decision = WorkflowDecision(
            operation=Operation.MULTI_STEP,
            confidence=0.9,
            parameters={"steps": [{"operation": "analyze"}, {"operation": "upscale"}]},
        )
        plan = StepPlanner().plan(decision, "x", image_context("x"))

        assert not plan.context_chain

    def test_enhanced_prompt_chains_into_compose(self):
        """enhance_prompt → compose chains the text, not a product image"""
        from intent_engine.pattern_matching import MatchContext
        from intent_engine.pipeline_definitions import StepPlanner

        message = "enhance my prompt then generate a vase"
        plan = StepPlanner().plan(
            heuristic(Operation.ENHANCE_PROMPT), message, MatchContext(message=message), RoleAssignment()
        )

        assert [s.operation for s in plan.steps] == [Operation.ENHANCE_PROMPT, Operation.COMPOSE]
        assert plan.context_chain
        assert plan.steps[1].workflow_type == WorkflowType.PROMPT_ONLY

    def test_compose_step_gets_workflow(self):
        """With an assignment, compose steps carry their workflow"""
        from intent_engine.pipeline_definitions import StepPlanner

        message = "design a floral mug then upscale it"
        plan = StepPlanner().plan(heuristic(Operation.COMPOSE), message, image_context(message), RoleAssignment())

        assert plan.steps[0].operation == Operation.COMPOSE
        assert plan.steps[0].workflow_type == WorkflowType.PROMPT_ONLY
        assert plan.steps[1].operation == Operation.UPSCALE

    @pytest.mark.parametrize("operations,expected", [
        ([Operation.UPSCALE, Operation.REFRAME], "Upscale & Reframe"),
        ([Operation.CREATE_VIDEO, Operation.VIDEO_SOUND], "Animate & Add Sound"),
    ])
    def test_registry_lookup(self, operations, expected):
        from intent_engine.pipeline_definitions import PipelineRegistry

        assert PipelineRegistry.find_pipeline(operations).name == expected
