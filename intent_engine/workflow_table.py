"""
Composition Workflow Table - Maps populated roles plus free text to one of
the 8 composition workflows.

Each row states which of product / design / color must be present (True),
absent (False), and whether free text is required. Rows are disjoint, so at
most one row matches any combination; everything else is unsupported.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

from intent_engine.error_handler import UnsupportedCombinationError
from intent_engine.models import WorkflowType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowRow:
    workflow: WorkflowType
    product: bool
    design: bool
    color: bool
    text_required: bool

    def accepts(self, has_product: bool, has_design: bool, has_color: bool, has_free_text: bool) -> bool:
        if (has_product, has_design, has_color) != (self.product, self.design, self.color):
            return False
        return has_free_text or not self.text_required


WORKFLOW_TABLE: List[WorkflowRow] = [
    WorkflowRow(WorkflowType.FULL_COMPOSITION, product=True, design=True, color=True, text_required=False),
    WorkflowRow(WorkflowType.PRODUCT_DESIGN, product=True, design=True, color=False, text_required=False),
    WorkflowRow(WorkflowType.PRODUCT_COLOR, product=True, design=False, color=True, text_required=False),
    WorkflowRow(WorkflowType.PRODUCT_PROMPT, product=True, design=False, color=False, text_required=True),
    WorkflowRow(WorkflowType.COLOR_DESIGN, product=False, design=True, color=True, text_required=True),
    WorkflowRow(WorkflowType.DESIGN_PROMPT, product=False, design=True, color=False, text_required=True),
    WorkflowRow(WorkflowType.COLOR_PROMPT, product=False, design=False, color=True, text_required=True),
    WorkflowRow(WorkflowType.PROMPT_ONLY, product=False, design=False, color=False, text_required=True),
]

ROWS_BY_WORKFLOW: Dict[WorkflowType, WorkflowRow] = {row.workflow: row for row in WORKFLOW_TABLE}


# Generation prompt used when the request carries no free text
DEFAULT_PROMPTS: Dict[WorkflowType, str] = {
    WorkflowType.FULL_COMPOSITION: "Create a photorealistic product combining all reference images. Maintain original structure, no text.",
    WorkflowType.PRODUCT_DESIGN: "Apply design patterns from reference to product. Maintain form, photorealistic, no text.",
    WorkflowType.PRODUCT_COLOR: "Apply color palette from reference to product. Keep original design, photorealistic, no text.",
    WorkflowType.PRODUCT_PROMPT: "Modify product based on description while keeping core identity. Photorealistic, no text.",
    WorkflowType.COLOR_DESIGN: "Create new product using colors/designs from references. Photorealistic, no text.",
    WorkflowType.DESIGN_PROMPT: "Create new product featuring the reference design. Photorealistic, no text.",
    WorkflowType.COLOR_PROMPT: "Create new product using the reference color palette. Photorealistic, no text.",
    WorkflowType.PROMPT_ONLY: "Generate innovative product based on description. Photorealistic, no text.",
}


def decide_workflow(has_product: bool, has_design: bool, has_color: bool, has_free_text: bool) -> WorkflowType:
    """
    Pick the composition workflow for a role/text combination.

    Raises:
        UnsupportedCombinationError: no row accepts the combination
    """
    for row in WORKFLOW_TABLE:
        if row.accepts(has_product, has_design, has_color, has_free_text):
            logger.info(f"[WORKFLOW] {row.workflow.value}")
            return row.workflow
    raise UnsupportedCombinationError(has_product, has_design, has_color, has_free_text)


def validate_workflow(
    workflow: WorkflowType,
    has_product: bool,
    has_design: bool,
    has_color: bool,
    has_free_text: bool,
) -> bool:
    """Re-check a chosen workflow against the same four booleans."""
    return ROWS_BY_WORKFLOW[workflow].accepts(has_product, has_design, has_color, has_free_text)


def generation_prompt(workflow: WorkflowType, user_text: Optional[str]) -> str:
    """User text when present, the workflow's default prompt otherwise."""
    text = (user_text or "").strip()
    return text if text else DEFAULT_PROMPTS[workflow]
