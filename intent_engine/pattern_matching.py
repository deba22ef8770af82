"""
Heuristic Pattern Matching Engine

Table-driven operation matcher. Every operation registers an OperationRule:
trigger phrases, a priority, a base confidence, media predicates and a
parameter extractor. The matcher evaluates every registration against the
request and returns the highest-priority confident match, so the rule set is
data rather than nested control flow.

RULE STRUCTURE:
- triggers: word-bounded phrases (regex fragments allowed)
- priority: higher wins when several rules match
- subject: IMAGE / VIDEO restricts a rule to requests about that media
- safe_to_bypass: a confident match may skip semantic classification
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from intent_engine.models import MediaType, Operation

logger = logging.getLogger(__name__)


# ============================================
# PRECOMPILED PATTERNS
# ============================================

RE_SCALE_FACTOR = re.compile(r'\b([2-8])\s*x\b|\bx\s*([2-8])\b', re.IGNORECASE)
RE_DURATION = re.compile(r'\b(5|10)\s*(?:s|sec|secs|seconds?)\b', re.IGNORECASE)
RE_OBJECT_TO_REMOVE = re.compile(
    r'\b(?:remove|erase|delete|get rid of)\s+(?:the\s+)?(?!background\b)([a-z][a-z ]{1,40}?)(?:\s+from\b|[.,!?]|$)',
    re.IGNORECASE,
)
RE_TIME_OF_DAY = re.compile(r'\b(sunrise|morning|noon|afternoon|golden hour|sunset|dusk|evening|night)\b', re.IGNORECASE)

RE_VIDEO_SUBJECT = re.compile(r'\b(?:the|this|that|my|last|previous)\s+(?:video|clip|animation|footage)\b', re.IGNORECASE)
RE_IMAGE_SUBJECT = re.compile(r'\b(?:the|this|that|my|last|previous)\s+(?:image|photo|picture|design|render)\b', re.IGNORECASE)
RE_SOUND_REQUEST = re.compile(r'\b(?:add|with|put)\s+(?:some\s+)?(?:sound|audio|music|soundtrack)\b', re.IGNORECASE)

RE_COMPLEXITY_MARKERS = re.compile(r'\b(?:and|then|both|all|multiple)\b', re.IGNORECASE)
COMPLEXITY_WORD_LIMIT = 10

CASUAL_MESSAGES = {
    "hi", "hello", "hey", "hey there", "hi there", "yo", "sup",
    "thanks", "thank you", "thx", "ty", "cool", "nice", "great", "awesome",
    "ok", "okay", "bye", "goodbye", "good morning", "good evening",
    "how are you", "what's up", "whats up", "who are you", "what can you do",
}

DESIGN_KEYWORDS = re.compile(
    r'\b(design|create|generate|make|compose|product|pattern|print|logo|shirt|t-?shirt|hoodie|mug|'
    r'bottle|vase|bag|color|colour|palette|style|image|photo|picture|video)\b',
    re.IGNORECASE,
)


def _compile_triggers(triggers: Tuple[str, ...]) -> re.Pattern:
    body = "|".join(triggers)
    return re.compile(rf"(?<![\w-])(?:{body})(?![\w-])", re.IGNORECASE)


# ============================================
# PARAMETER EXTRACTORS
# ============================================

def _no_params(message: str) -> Dict[str, Any]:
    return {}


def extract_scale_params(message: str) -> Dict[str, Any]:
    match = RE_SCALE_FACTOR.search(message)
    factor = int(match.group(1) or match.group(2)) if match else 2
    return {"upscaleFactor": factor}


def extract_clarity_params(message: str) -> Dict[str, Any]:
    params = extract_scale_params(message)
    params["creativity"] = 0.35
    return params


def extract_frame_params(message: str) -> Dict[str, Any]:
    lowered = message.lower()
    if "landscape" in lowered or "wide" in lowered or "16:9" in lowered:
        return {"imageSize": "landscape"}
    if "portrait" in lowered or "vertical" in lowered or "9:16" in lowered or "story" in lowered:
        return {"imageSize": "portrait"}
    return {"imageSize": "square_hd"}


def extract_video_params(message: str) -> Dict[str, Any]:
    match = RE_DURATION.search(message)
    return {"duration": match.group(1) if match else "5", "cfg_scale": 0.5}


def extract_lighting_params(message: str) -> Dict[str, Any]:
    match = RE_TIME_OF_DAY.search(message)
    return {"timeOfDay": match.group(1).lower()} if match else {}


def extract_removal_params(message: str) -> Dict[str, Any]:
    match = RE_OBJECT_TO_REMOVE.search(message)
    return {"object": match.group(1).strip()} if match else {}


def extract_prompt_text(message: str) -> Dict[str, Any]:
    return {"prompt": message.strip()}


# ============================================
# RULE REGISTRY
# ============================================

@dataclass(frozen=True)
class OperationRule:
    """One operation's trigger phrases and routing metadata"""
    operation: Operation
    triggers: Tuple[str, ...]
    priority: int
    confidence: float
    requires_media: bool = True
    subject: Optional[MediaType] = None
    safe_to_bypass: bool = True
    extract_params: Callable[[str], Dict[str, Any]] = _no_params
    pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "pattern", _compile_triggers(self.triggers))

    def matches(self, message: str, subject_media: Optional[MediaType]) -> bool:
        if self.subject == MediaType.VIDEO and subject_media != MediaType.VIDEO:
            return False
        if self.subject == MediaType.IMAGE and subject_media == MediaType.VIDEO:
            return False
        return bool(self.pattern.search(message))


class OperationRegistry:
    """Registry of heuristic operation rules"""

    rules: List[OperationRule] = []

    @classmethod
    def register(cls, rule: OperationRule):
        """Register a rule"""
        cls.rules.append(rule)
        logger.debug(f"[RULE REGISTERED] {rule.operation.value}")

    @classmethod
    def matching(cls, message: str, subject_media: Optional[MediaType]) -> List[OperationRule]:
        """All rules matching the message, highest priority first."""
        hits = [rule for rule in cls.rules if rule.matches(message, subject_media)]
        return sorted(hits, key=lambda r: (r.priority, r.confidence), reverse=True)


UPSCALE_TRIGGERS = (
    "enhance", "upscale", "upcale", "upscal", "make bigger", "make it bigger", "bigger", "larger",
    "increase resolution", "higher resolution", "improve quality", "better quality",
)
REFRAME_TRIGGERS = (
    "reframe", "crop", "landscape", "portrait", "square", "resize", "aspect ratio", "widescreen",
)

# Prompt tools
OperationRegistry.register(OperationRule(
    operation=Operation.ENHANCE_PROMPT,
    triggers=(r"(?:enhance|improve|rewrite|better|refine)\s+(?:my\s+|the\s+|this\s+)?prompt", "prompt enhancer"),
    priority=90, confidence=0.96, requires_media=False, extract_params=extract_prompt_text,
))
OperationRegistry.register(OperationRule(
    operation=Operation.GENERATE_TITLE,
    triggers=(r"(?:create|generate|give me|suggest|write)\s+(?:a\s+)?(?:title|name|product name)", "title for", "name for"),
    priority=85, confidence=0.96, requires_media=False, extract_params=extract_prompt_text,
))

# Video operations (subject is a video)
OperationRegistry.register(OperationRule(
    operation=Operation.VIDEO_SOUND,
    triggers=("sound", "audio", "music", "soundtrack", "sound effects"),
    priority=58, confidence=0.95,
))
OperationRegistry.register(OperationRule(
    operation=Operation.VIDEO_UPSCALE,
    triggers=UPSCALE_TRIGGERS,
    priority=52, confidence=0.95, subject=MediaType.VIDEO,
))
OperationRegistry.register(OperationRule(
    operation=Operation.VIDEO_OUTPAINT,
    triggers=("outpaint", "expand the video", "extend the frame", "expand the frame", "wider shot"),
    priority=49, confidence=0.9, subject=MediaType.VIDEO,
))
OperationRegistry.register(OperationRule(
    operation=Operation.VIDEO_REFRAME,
    triggers=REFRAME_TRIGGERS,
    priority=46, confidence=0.95, subject=MediaType.VIDEO, extract_params=extract_frame_params,
))

# Image operations
OperationRegistry.register(OperationRule(
    operation=Operation.REMOVE_BACKGROUND,
    triggers=(r"remove\s+(?:the\s+)?background", "transparent background", "no background",
              "background removal", "cut out", "cutout"),
    priority=60, confidence=0.96, subject=MediaType.IMAGE,
))
OperationRegistry.register(OperationRule(
    operation=Operation.CLARITY_UPSCALE,
    triggers=("clarity", "sharpen", "sharper", "crisp", "hd", "4k", "high definition"),
    priority=55, confidence=0.95, subject=MediaType.IMAGE, extract_params=extract_clarity_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.UPSCALE,
    triggers=UPSCALE_TRIGGERS,
    priority=50, confidence=0.95, subject=MediaType.IMAGE, extract_params=extract_scale_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.ZOOM_SEQUENCE,
    triggers=("zoom", "zoom in", "zoom out", "zoom sequence"),
    priority=48, confidence=0.9, subject=MediaType.IMAGE,
))
OperationRegistry.register(OperationRule(
    operation=Operation.MIRROR_MAGIC,
    triggers=("mirror", "symmetry", "symmetrical", "reflection"),
    priority=47, confidence=0.95, subject=MediaType.IMAGE,
))
OperationRegistry.register(OperationRule(
    operation=Operation.REFRAME,
    triggers=REFRAME_TRIGGERS,
    priority=45, confidence=0.95, subject=MediaType.IMAGE, extract_params=extract_frame_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.CREATE_VIDEO,
    triggers=("video", "animate", "animated", "animation", "motion", "move", "gif", "movie"),
    priority=44, confidence=0.95, subject=MediaType.IMAGE, extract_params=extract_video_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.LIGHTING,
    triggers=("lighting", "light", "golden hour", "sunset", "sunrise", "night time", "nighttime",
              "daytime", "time of day", "morning light"),
    priority=42, confidence=0.9, subject=MediaType.IMAGE, extract_params=extract_lighting_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.ANALYZE,
    triggers=("analyze", "analyse", "describe", "tell me about", "what is in", "what's in",
              "identify", "explain", "what do you see"),
    priority=40, confidence=0.95,
))
OperationRegistry.register(OperationRule(
    operation=Operation.OBJECT_REMOVAL,
    triggers=("erase", "get rid of", r"remove\s+(?:the\s+)?(?!background)[a-z]+", r"delete\s+the"),
    priority=38, confidence=0.85, subject=MediaType.IMAGE, safe_to_bypass=False,
    extract_params=extract_removal_params,
))
OperationRegistry.register(OperationRule(
    operation=Operation.SCENE_COMPOSITION,
    triggers=("scene", "place it in", "put it in", "put it on a", "lifestyle shot", "in a room", "on a table"),
    priority=35, confidence=0.85, subject=MediaType.IMAGE, safe_to_bypass=False,
))
OperationRegistry.register(OperationRule(
    operation=Operation.PAIRING,
    triggers=("pair", "pairing", "match with", "goes with", "outfit"),
    priority=30, confidence=0.85, safe_to_bypass=False,
))
OperationRegistry.register(OperationRule(
    operation=Operation.FLOW_DESIGN,
    triggers=("flow design", "design flow", "variations", "multiple designs"),
    priority=20, confidence=0.85, safe_to_bypass=False,
))
OperationRegistry.register(OperationRule(
    operation=Operation.COMPOSE,
    triggers=("design", "create", "generate", "make", "compose", "combine", "apply", "pattern", "print"),
    priority=10, confidence=0.8, requires_media=False, safe_to_bypass=False,
    extract_params=extract_prompt_text,
))


# ============================================
# MATCHING
# ============================================

@dataclass
class MatchContext:
    """What the matcher knows about a request"""
    message: str
    has_media: bool = False
    has_reference: bool = False
    subject_media: Optional[MediaType] = None


@dataclass
class HeuristicCandidate:
    """Best heuristic guess for a request"""
    operation: Operation
    confidence: float
    parameters: Dict[str, Any] = field(default_factory=dict)
    requires_files: bool = False
    safe_to_bypass: bool = False
    explanation: str = ""


def normalize_message(message: str) -> str:
    return " ".join((message or "").lower().split())


def is_casual(message: str) -> bool:
    """Greeting or chit-chat with no design intent."""
    normalized = normalize_message(message).strip(" !?.,")
    if not normalized:
        return False
    if DESIGN_KEYWORDS.search(normalized):
        return False
    return normalized in CASUAL_MESSAGES or any(
        normalized.startswith(phrase + " ") for phrase in ("hi", "hello", "hey", "thanks", "thank you")
    )


def is_complex(message: str) -> bool:
    """Requests with connectors or many words go to the semantic classifier."""
    normalized = normalize_message(message)
    if RE_COMPLEXITY_MARKERS.search(normalized):
        return True
    return len(normalized.split()) > COMPLEXITY_WORD_LIMIT


def detect_media_preference(message: str) -> Optional[MediaType]:
    """Which media type the request is about, when the text says so."""
    if not message:
        return None
    if RE_VIDEO_SUBJECT.search(message) or RE_SOUND_REQUEST.search(message):
        return MediaType.VIDEO
    if RE_IMAGE_SUBJECT.search(message):
        return MediaType.IMAGE
    return None


def match_rules(message: str, subject_media: Optional[MediaType]) -> Optional[OperationRule]:
    """Highest-priority rule matching a message, or None."""
    hits = OperationRegistry.matching(normalize_message(message), subject_media)
    return hits[0] if hits else None


def match(context: MatchContext) -> HeuristicCandidate:
    """Evaluate every registered rule and return the best candidate."""
    message = normalize_message(context.message)
    has_input = context.has_media or context.has_reference

    if is_casual(message) and not context.has_media:
        logger.info("[HEURISTIC] Casual conversation")
        return HeuristicCandidate(
            operation=Operation.CONVERSATION,
            confidence=0.95,
            safe_to_bypass=True,
            explanation="Casual conversation, no operation requested",
        )

    rule = match_rules(message, context.subject_media)
    if rule is not None:
        logger.info(f"[HEURISTIC] Matched {rule.operation.value} (priority {rule.priority})")
        return HeuristicCandidate(
            operation=rule.operation,
            confidence=rule.confidence,
            parameters=rule.extract_params(context.message),
            requires_files=rule.requires_media,
            safe_to_bypass=rule.safe_to_bypass and (has_input or not rule.requires_media),
            explanation=f"Matched '{rule.operation.value}' trigger phrases",
        )

    if context.has_media:
        return HeuristicCandidate(
            operation=Operation.COMPOSE,
            confidence=0.6,
            parameters=extract_prompt_text(context.message) if message else {},
            explanation="Images supplied without a specific operation, composing",
        )

    if message and DESIGN_KEYWORDS.search(message):
        return HeuristicCandidate(
            operation=Operation.COMPOSE,
            confidence=0.7,
            parameters=extract_prompt_text(context.message),
            explanation="Design request without images",
        )

    return HeuristicCandidate(
        operation=Operation.CONVERSATION,
        confidence=0.5,
        explanation="No operation recognized",
    )
