"""
Response Synthesizer - Turns decisions and step results into the user-facing
response: status, message text and next-step recommendations.
"""

from typing import Dict, List, Optional
import logging

from intent_engine.error_handler import ErrorClassifier
from intent_engine.models import (
    Operation,
    OrchestrateResponse,
    Recommendation,
    ResolvedReference,
    ResponseStatus,
    RoleAssignment,
    StepPlan,
    StepResult,
    StepStatus,
    WorkflowDecision,
)


logger = logging.getLogger(__name__)


SUCCESS_MESSAGES: Dict[Operation, str] = {
    Operation.COMPOSE: "Your design is ready.",
    Operation.FLOW_DESIGN: "Your pattern is ready.",
    Operation.UPSCALE: "I've upscaled your image.",
    Operation.CLARITY_UPSCALE: "I've sharpened and upscaled your image.",
    Operation.REFRAME: "I've reframed your image.",
    Operation.ANALYZE: "Here's what I see.",
    Operation.REMOVE_BACKGROUND: "Background removed.",
    Operation.LIGHTING: "I've changed the lighting.",
    Operation.SCENE_COMPOSITION: "I've placed your product in a new scene.",
    Operation.OBJECT_REMOVAL: "Object removed.",
    Operation.ZOOM_SEQUENCE: "Your zoom sequence is ready.",
    Operation.PAIRING: "Here are some pairing ideas.",
    Operation.MIRROR_MAGIC: "Mirror effect applied.",
    Operation.CREATE_VIDEO: "Your video is ready.",
    Operation.VIDEO_UPSCALE: "I've upscaled your video.",
    Operation.VIDEO_REFRAME: "I've reframed your video.",
    Operation.VIDEO_SOUND: "I've added sound to your video.",
    Operation.VIDEO_OUTPAINT: "I've expanded your video frame.",
    Operation.ENHANCE_PROMPT: "Here's an enhanced version of your prompt.",
    Operation.GENERATE_TITLE: "Here's a title suggestion.",
}

# Logical next step after each operation
NEXT_STEPS: Dict[Operation, List[Recommendation]] = {
    Operation.COMPOSE: [
        Recommendation(operation=Operation.UPSCALE, label="Enhance Quality", description="Upscale the design for print"),
        Recommendation(operation=Operation.CREATE_VIDEO, label="Animate", description="Turn the design into a short video"),
    ],
    Operation.FLOW_DESIGN: [
        Recommendation(operation=Operation.COMPOSE, label="Apply to Product", description="Use the pattern on a product"),
    ],
    Operation.UPSCALE: [
        Recommendation(operation=Operation.ANALYZE, label="Analyze Result", description="Describe the upscaled image"),
    ],
    Operation.CLARITY_UPSCALE: [
        Recommendation(operation=Operation.ANALYZE, label="Analyze Result", description="Describe the sharpened image"),
    ],
    Operation.REFRAME: [
        Recommendation(operation=Operation.UPSCALE, label="Enhance Quality", description="Upscale the reframed image"),
    ],
    Operation.REMOVE_BACKGROUND: [
        Recommendation(operation=Operation.SCENE_COMPOSITION, label="Place in Scene", description="Put the product in a new scene"),
    ],
    Operation.LIGHTING: [
        Recommendation(operation=Operation.UPSCALE, label="Enhance Quality", description="Upscale the relit image"),
    ],
    Operation.CREATE_VIDEO: [
        Recommendation(operation=Operation.VIDEO_UPSCALE, label="Upscale Video", description="Improve the video resolution"),
        Recommendation(operation=Operation.VIDEO_SOUND, label="Add Sound", description="Add a soundtrack"),
    ],
    Operation.VIDEO_UPSCALE: [
        Recommendation(operation=Operation.VIDEO_SOUND, label="Add Sound", description="Add a soundtrack"),
    ],
    Operation.ENHANCE_PROMPT: [
        Recommendation(operation=Operation.COMPOSE, label="Generate Design", description="Create a design from this prompt"),
    ],
}

CONVERSATION_REPLY = (
    "Hi! I can design products from your images or a description, upscale, reframe, "
    "relight or animate results. Upload an image or tell me what you'd like to create."
)
UPLOAD_PROMPT = "Please upload an image (or pick a preset) so I can {action}."


class ResponseSynthesizer:
    """Builds OrchestrateResponse objects"""

    @staticmethod
    def recommendations_for(operation: Operation) -> List[Recommendation]:
        return list(NEXT_STEPS.get(operation, []))

    def conversation(self, decision: WorkflowDecision) -> OrchestrateResponse:
        return OrchestrateResponse(
            status=ResponseStatus.SUCCESS,
            message=CONVERSATION_REPLY,
            decision=decision,
        )

    def needs_files(self, decision: WorkflowDecision) -> OrchestrateResponse:
        action = decision.operation.value.replace("_", " ")
        return OrchestrateResponse(
            status=ResponseStatus.SUCCESS,
            message=UPLOAD_PROMPT.format(action=action),
            decision=decision,
        )

    def error(self, exc: BaseException, partial_failures: Optional[List[str]] = None, **context) -> OrchestrateResponse:
        classification = ErrorClassifier.classify(exc)
        return OrchestrateResponse(
            status=ResponseStatus.ERROR,
            message=classification.user_message,
            partial_failures=partial_failures or [],
            error=classification.to_detail(),
            **context,
        )

    def from_results(
        self,
        decision: WorkflowDecision,
        plan: StepPlan,
        results: List[StepResult],
        assignment: RoleAssignment,
        reference: ResolvedReference,
        partial_failures: Optional[List[str]] = None,
    ) -> OrchestrateResponse:
        """Summarize executed steps. Any failure after a success makes the response mixed."""
        succeeded = [r for r in results if r.status == StepStatus.SUCCESS]
        failed = [r for r in results if r.status == StepStatus.ERROR]

        if failed and not succeeded:
            status = ResponseStatus.ERROR
        elif failed or len(results) < len(plan.steps):
            status = ResponseStatus.MIXED
        else:
            status = ResponseStatus.SUCCESS

        final_artifact = None
        for result in reversed(succeeded):
            if result.artifact is not None:
                final_artifact = result.artifact
                break

        parts: List[str] = []
        for result in succeeded:
            parts.append(SUCCESS_MESSAGES.get(result.operation, "Done."))
            if result.text:
                parts.append(result.text)
        for result in failed:
            parts.append(f"Step {result.step_index + 1} ({result.operation.value}) failed: {result.error}")
        skipped = len(plan.steps) - len(results)
        if skipped > 0:
            parts.append(f"{skipped} remaining step(s) were not run.")

        recommendations = self.recommendations_for(succeeded[-1].operation) if succeeded and not failed else []

        logger.info(f"[RESPONSE] {status.value}: {len(succeeded)} ok, {len(failed)} failed, {skipped} skipped")
        return OrchestrateResponse(
            status=status,
            message=" ".join(parts) if parts else "Nothing was run.",
            decision=decision,
            plan=plan,
            role_assignment=assignment,
            resolved_reference=reference,
            step_results=results,
            final_artifact=final_artifact,
            recommendations=recommendations,
            partial_failures=partial_failures or [],
        )
