"""
Step Executor - Runs a StepPlan strictly in order.

Each step's artifact is persisted before the next step sees it. With
context chaining, a media step works on the previous step's media and a
composition after a prompt tool takes its text as the prompt. A missing
chained input or the first failure halts the rest of the plan. Earlier steps
are never retried.
"""

from typing import Dict, List, Optional
import asyncio
import logging

from intent_engine.config import settings
from intent_engine.generation_adapter import GenerationAdapter, GenerationResult
from intent_engine.input_normalizer import extension_for
from intent_engine.models import (
    MediaType,
    Operation,
    Role,
    RoleAssignment,
    StepPlan,
    StepResult,
    StepStatus,
    StoredArtifact,
    WorkflowDecision,
)
from intent_engine.pipeline_definitions import feeds_media, feeds_prompt
from intent_engine.storage import ObjectStorage, build_object_path


logger = logging.getLogger(__name__)


ROLE_FIELDS = {
    Role.PRODUCT: "product_image",
    Role.DESIGN: "design_image",
    Role.COLOR: "color_image",
}


def media_refs_for(step: WorkflowDecision, assignment: RoleAssignment, chained: Optional[StoredArtifact]) -> Dict[str, str]:
    """Backend media fields for a step: role images for compose, a single subject otherwise."""
    if step.operation == Operation.COMPOSE:
        refs = {
            ROLE_FIELDS[role]: assignment.get(role).artifact.uri
            for role in ROLE_FIELDS
            if assignment.get(role).artifact is not None
        }
        if chained is not None:
            refs[ROLE_FIELDS[Role.PRODUCT]] = chained.uri
        return refs

    subject = chained or assignment.primary_artifact()
    if subject is None:
        return {}
    key = "video" if subject.media_type == MediaType.VIDEO else "image"
    return {key: subject.uri}


class StepExecutor:
    """Sequential plan runner"""

    def __init__(self, adapter: GenerationAdapter, storage: ObjectStorage):
        self.adapter = adapter
        self.storage = storage

    async def _persist(self, result: GenerationResult, conversation_id: str, step_index: int) -> Optional[StoredArtifact]:
        """Store a step's media. On timeout or failure, keep the backend's own reference."""
        if not result.has_media:
            return None

        if result.data is None:
            return StoredArtifact(uri=result.uri, content_type=result.content_type, media_type=result.media_type)

        path = build_object_path(
            conversation_id,
            "output",
            f"step{step_index + 1}_{result.operation.value}{extension_for(result.content_type)}",
        )
        try:
            uri = await asyncio.wait_for(
                self.storage.put(result.data, path, result.content_type),
                timeout=settings.persist_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[STEP] Persist timed out for step {step_index + 1}, passing backend reference on")
            uri = result.uri
        except OSError as exc:
            logger.warning(f"[STEP] Persist failed for step {step_index + 1} ({exc}), passing backend reference on")
            uri = result.uri

        return StoredArtifact(
            uri=uri,
            content_type=result.content_type,
            size_bytes=len(result.data),
            media_type=result.media_type,
        )

    async def execute(
        self,
        plan: StepPlan,
        assignment: RoleAssignment,
        conversation_id: str,
        stream: bool = False,
    ) -> List[StepResult]:
        """Run every step in order and return the ordered results."""
        results: List[StepResult] = []

        for index, step in enumerate(plan.steps):
            chained: Optional[StoredArtifact] = None
            parameters = step.parameters
            if index > 0 and plan.context_chain:
                previous = results[-1]
                previous_op = plan.steps[index - 1].operation
                if feeds_media(previous_op, step.operation):
                    if previous.artifact is None:
                        logger.warning(f"[STEP] Step {index} left no media for step {index + 1}, halting")
                        break
                    chained = previous.artifact
                elif feeds_prompt(previous_op, step.operation) and previous.text:
                    parameters = {**parameters, "prompt": previous.text}

            media_refs = media_refs_for(step, assignment, chained)
            logger.info(f"[STEP] {index + 1}/{len(plan.steps)} {step.operation.value} ({len(media_refs)} media)")

            outcome = await self.adapter.generate(step.operation, parameters, media_refs, stream=stream)
            if not outcome.ok:
                results.append(StepResult(
                    step_index=index,
                    operation=step.operation,
                    status=StepStatus.ERROR,
                    error=str(outcome.error),
                ))
                logger.warning(f"[STEP] {index + 1} failed, halting remaining {len(plan.steps) - index - 1} step(s)")
                break

            generated: GenerationResult = outcome.value
            artifact = await self._persist(generated, conversation_id, index)
            results.append(StepResult(
                step_index=index,
                operation=step.operation,
                status=StepStatus.SUCCESS,
                artifact=artifact,
                text=generated.text,
                method=generated.method,
            ))

        return results
