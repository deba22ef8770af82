"""
Semantic Intent Classifier - Uses an LLM to route a request to an operation.

KEY PRINCIPLE: The model never touches media or calls backends.
It ONLY reads a description of the request and outputs routing JSON, which is
validated against a fixed schema before anything acts on it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

from groq import APIError, Groq

from intent_engine.config import settings
from intent_engine.error_handler import ClassificationError, MAX_RETRIES
from intent_engine.llm_output_handler import (
    LLMOutputError,
    parse_llm_json,
    safe_get,
    validate_routing_payload,
)
from intent_engine.models import (
    ENDPOINT_OPERATIONS,
    DecisionSource,
    MediaType,
    Operation,
    WorkflowDecision,
)


logger = logging.getLogger(__name__)


# ============================================
# SYSTEM PROMPT FOR THE LLM
# ============================================

SYSTEM_PROMPT = """You are the intent router for a creative product-design assistant. Read the user's request and its context and output ONE JSON object describing which operation to run.

SUPPORTED ENDPOINTS:
- none: greetings, thanks, questions about the assistant, vague help requests
- /api/design: product compositions and image generation (t-shirts, mugs, vases...), applying a design or color palette to a product
- /api/flowdesign: new abstract patterns or flows from scratch
- /api/upscale: make an image bigger, higher resolution, better quality
- /api/clarityupscaler: sharpen, crisp, HD, 4K
- /api/reframe: crop, reframe, landscape / portrait / square
- /api/analyzeimage: describe or analyze an image
- /api/removebg: remove the background
- /api/timeofday: change lighting or time of day
- /api/scenecomposition: place the product in a scene
- /api/objectremoval: remove an object from the image
- /api/zoomsequence: zoom in/out sequence
- /api/pairing: suggest products that pair with this one
- /api/mirrormagic: mirror, symmetry, reflection
- /api/kling: animate an image into a video
- /api/videoupscaler, /api/videoreframe, /api/videosound, /api/videooutpainting: edit an existing video
- /api/promptenhancer: improve the user's prompt text
- /api/titlerenamer: create a title or name

CONTEXT RULES:
1. If images were uploaded and the user says "it"/"this"/"that", they mean the uploaded images.
2. Without uploads, "it"/"this"/"that" means the previous result.
3. "bigger" on a previous result → /api/upscale. "crop" → /api/reframe.
4. Explicit design requests go to a design endpoint even when they include a greeting.
5. When in doubt between design and conversation, choose /api/design.

MULTI-STEP:
If the user asks for 2-4 operations in sequence ("upscale and make landscape", "design then upscale"), answer with endpoint "multi_step" and list the steps in order.

RESPONSE FORMAT (all fields required):
{
  "intent": "short_intent_name",
  "confidence": 0.0-1.0,
  "endpoint": "none | /api/...",
  "parameters": {},
  "requiresFiles": true/false,
  "explanation": "one sentence"
}

For multi-step:
{
  "intent": "multi_step",
  "confidence": 0.9,
  "endpoint": "multi_step",
  "parameters": {
    "steps": [
      {"intent": "upscale_image", "endpoint": "/api/upscale", "parameters": {}},
      {"intent": "reframe_image", "endpoint": "/api/reframe", "parameters": {"imageSize": "landscape"}}
    ],
    "context_chain": true
  },
  "requiresFiles": true,
  "explanation": "upscale then reframe to landscape"
}

Output ONLY the JSON object."""

RETRY_SUFFIX = "\n\nPlease ensure your response is valid JSON."


@dataclass
class ClassificationContext:
    """Normalized description of a request for the classifiers"""
    message: str
    media_fields: List[str] = field(default_factory=list)
    has_reference: bool = False
    reference_trail: str = ""
    reference_media: Optional[MediaType] = None
    recent_history: List[Tuple[str, str]] = field(default_factory=list)
    presets: Dict[str, str] = field(default_factory=dict)

    @property
    def has_media(self) -> bool:
        return bool(self.media_fields)

    def to_prompt(self) -> str:
        lines = [f'Message: "{self.message}"']
        lines.append(f"Uploaded media: {json.dumps(self.media_fields) if self.media_fields else 'none'}")
        if self.presets:
            lines.append(f"Selected presets: {json.dumps(self.presets)}")
        if self.has_reference:
            media = self.reference_media.value if self.reference_media else "image"
            lines.append(f"Previous result available ({media}): {self.reference_trail or 'yes'}")
        if self.recent_history:
            lines.append("Recent conversation:")
            for role, text in self.recent_history:
                lines.append(f"- {role}: {text[:200]}")
        lines.append("\nRoute this request. JSON:")
        return "\n".join(lines)


def payload_to_decision(payload: Dict[str, Any]) -> WorkflowDecision:
    """Convert a validated routing payload into a WorkflowDecision."""
    operation = ENDPOINT_OPERATIONS[payload["endpoint"]]
    parameters = dict(payload["parameters"])

    if operation == Operation.MULTI_STEP:
        parameters["steps"] = [
            {
                "operation": ENDPOINT_OPERATIONS[step["endpoint"]].value,
                "parameters": safe_get(step, "parameters", {}) or {},
            }
            for step in parameters["steps"]
        ]

    return WorkflowDecision(
        operation=operation,
        confidence=float(payload["confidence"]),
        parameters=parameters,
        requires_files=payload["requiresFiles"],
        explanation=f"{payload['intent']}: {payload['explanation']}",
        source=DecisionSource.SEMANTIC,
    )


# ============================================
# CLASSIFIER IMPLEMENTATION
# ============================================

class SemanticClassifier:
    """Classifies requests using a Groq-hosted LLM"""

    def __init__(self, client: Optional[Any] = None):
        self.client = client or Groq(api_key=settings.groq_api_key)
        self.model = settings.llm_model

    def _complete(self, user_message: str, temperature: float) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_message}
                ],
                temperature=temperature,
                max_tokens=settings.llm_max_tokens,
                response_format={"type": "json_object"}  # Force JSON output
            )
        except APIError as exc:
            raise ClassificationError(f"LLM request failed: {exc}") from exc
        return response.choices[0].message.content or ""

    @staticmethod
    def _parse(raw: str) -> WorkflowDecision:
        payload = parse_llm_json(raw)
        problems = validate_routing_payload(payload)
        if problems:
            raise LLMOutputError("; ".join(problems))
        return payload_to_decision(payload)

    def classify(self, context: ClassificationContext) -> WorkflowDecision:
        """
        Route a request with the LLM.

        Malformed output gets one re-prompt before giving up.

        Raises:
            ClassificationError: transport failure or output still invalid after the retry
        """
        user_message = context.to_prompt()
        raw = self._complete(user_message, settings.llm_temperature)
        logger.debug(f"[SEMANTIC] Response: {raw}")

        attempts = 0
        while True:
            try:
                decision = self._parse(raw)
                logger.info(f"[SEMANTIC] {decision.operation.value} (confidence {decision.confidence:.2f})")
                return decision
            except LLMOutputError as exc:
                if attempts >= MAX_RETRIES:
                    raise ClassificationError(f"invalid classifier output: {exc}") from exc
                attempts += 1
                logger.warning(f"[SEMANTIC] Invalid output ({exc}), retrying once")
                raw = self._complete(user_message + RETRY_SUFFIX, settings.llm_retry_temperature)
