"""
Pydantic models for conversation turns, media inputs, routing decisions and
the request/response contract of the engine.
"""

from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


# ============================================
# ENUMERATIONS
# ============================================

class TurnRole(str, Enum):
    """Author of a conversation turn"""
    USER = "user"
    ASSISTANT = "assistant"


class MediaType(str, Enum):
    """Kind of media an artifact holds"""
    IMAGE = "image"
    VIDEO = "video"


class SourceKind(str, Enum):
    """Where a media input comes from"""
    UPLOAD = "upload"
    URL = "url"
    INLINE = "inline"
    PRESET = "preset"


class Role(str, Enum):
    """Semantic slot an image fills in a composition"""
    PRODUCT = "product"
    DESIGN = "design"
    COLOR = "color"


ROLE_ORDER: Tuple[Role, ...] = (Role.PRODUCT, Role.DESIGN, Role.COLOR)


class RoleSource(str, Enum):
    """How a role binding was filled"""
    EXPLICIT_UPLOAD = "explicit_upload"
    PRESET_TOKEN = "preset_token"
    RESOLVED_REFERENCE = "resolved_reference"
    NONE = "none"


class WorkflowType(str, Enum):
    """The 8 fixed composition modes"""
    FULL_COMPOSITION = "full_composition"
    PRODUCT_DESIGN = "product_design"
    PRODUCT_COLOR = "product_color"
    PRODUCT_PROMPT = "product_prompt"
    COLOR_DESIGN = "color_design"
    DESIGN_PROMPT = "design_prompt"
    COLOR_PROMPT = "color_prompt"
    PROMPT_ONLY = "prompt_only"


class Operation(str, Enum):
    """Catalog of operations a request can be routed to"""
    COMPOSE = "compose"
    FLOW_DESIGN = "flow_design"
    UPSCALE = "upscale"
    CLARITY_UPSCALE = "clarity_upscale"
    REFRAME = "reframe"
    ANALYZE = "analyze"
    REMOVE_BACKGROUND = "remove_background"
    LIGHTING = "lighting"
    SCENE_COMPOSITION = "scene_composition"
    OBJECT_REMOVAL = "object_removal"
    ZOOM_SEQUENCE = "zoom_sequence"
    PAIRING = "pairing"
    MIRROR_MAGIC = "mirror_magic"
    CREATE_VIDEO = "create_video"
    VIDEO_UPSCALE = "video_upscale"
    VIDEO_REFRAME = "video_reframe"
    VIDEO_SOUND = "video_sound"
    VIDEO_OUTPAINT = "video_outpaint"
    ENHANCE_PROMPT = "enhance_prompt"
    GENERATE_TITLE = "generate_title"
    CONVERSATION = "conversation"
    MULTI_STEP = "multi_step"


OPERATION_ENDPOINTS: Dict[Operation, str] = {
    Operation.COMPOSE: "/api/design",
    Operation.FLOW_DESIGN: "/api/flowdesign",
    Operation.UPSCALE: "/api/upscale",
    Operation.CLARITY_UPSCALE: "/api/clarityupscaler",
    Operation.REFRAME: "/api/reframe",
    Operation.ANALYZE: "/api/analyzeimage",
    Operation.REMOVE_BACKGROUND: "/api/removebg",
    Operation.LIGHTING: "/api/timeofday",
    Operation.SCENE_COMPOSITION: "/api/scenecomposition",
    Operation.OBJECT_REMOVAL: "/api/objectremoval",
    Operation.ZOOM_SEQUENCE: "/api/zoomsequence",
    Operation.PAIRING: "/api/pairing",
    Operation.MIRROR_MAGIC: "/api/mirrormagic",
    Operation.CREATE_VIDEO: "/api/kling",
    Operation.VIDEO_UPSCALE: "/api/videoupscaler",
    Operation.VIDEO_REFRAME: "/api/videoreframe",
    Operation.VIDEO_SOUND: "/api/videosound",
    Operation.VIDEO_OUTPAINT: "/api/videooutpainting",
    Operation.ENHANCE_PROMPT: "/api/promptenhancer",
    Operation.GENERATE_TITLE: "/api/titlerenamer",
    Operation.CONVERSATION: "none",
    Operation.MULTI_STEP: "multi_step",
}

ENDPOINT_OPERATIONS: Dict[str, Operation] = {v: k for k, v in OPERATION_ENDPOINTS.items()}

# Operations whose output is a video
VIDEO_OUTPUT_OPERATIONS = {
    Operation.CREATE_VIDEO,
    Operation.VIDEO_UPSCALE,
    Operation.VIDEO_REFRAME,
    Operation.VIDEO_SOUND,
    Operation.VIDEO_OUTPAINT,
}

# Operations that consume a video as their subject
VIDEO_INPUT_OPERATIONS = VIDEO_OUTPUT_OPERATIONS - {Operation.CREATE_VIDEO}


class DecisionSource(str, Enum):
    """Which classifier produced a decision"""
    HEURISTIC = "heuristic"
    SEMANTIC = "semantic"
    HEURISTIC_FALLBACK = "heuristic_fallback"
    PLANNER = "planner"


class StepStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ResponseStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    MIXED = "mixed"


# ============================================
# ARTIFACTS & CONVERSATION
# ============================================

class StoredArtifact(BaseModel):
    """A media object persisted in object storage"""
    model_config = ConfigDict(frozen=True)

    uri: str
    content_type: str = "image/png"
    size_bytes: int = 0
    media_type: MediaType = MediaType.IMAGE


class ConversationTurn(BaseModel):
    """One immutable turn of conversation history"""
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    text: str = ""
    timestamp: float
    produced_artifacts: List[StoredArtifact] = Field(default_factory=list)
    input_media_refs: List[str] = Field(default_factory=list)
    id: Optional[str] = None
    reference_to: Optional[str] = Field(
        default=None,
        description="Id of the turn an explicit reference pointed at when this turn was recorded",
    )


class MediaInput(BaseModel):
    """A media attachment as received with a request"""
    source_kind: SourceKind
    raw_ref: Union[bytes, str]
    field_name_hint: str = ""
    filename: Optional[str] = None
    content_type: Optional[str] = None
    required: bool = True


class ReferencePointer(BaseModel):
    """Caller-supplied pointer at an earlier turn"""
    timestamp: Optional[float] = None
    text: Optional[str] = None
    id: Optional[str] = None


class ResolvedReference(BaseModel):
    """Artifacts gathered by walking a reference chain"""
    artifacts: List[StoredArtifact] = Field(default_factory=list)
    text_trail: str = ""
    inherited_role_hints: Dict[Role, str] = Field(default_factory=dict)
    hop_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.artifacts


# ============================================
# ROLES
# ============================================

class RoleBinding(BaseModel):
    """What fills a single role"""
    source: RoleSource = RoleSource.NONE
    artifact: Optional[StoredArtifact] = None
    token: Optional[str] = None

    @property
    def filled(self) -> bool:
        return self.source != RoleSource.NONE


class RoleAssignment(BaseModel):
    """Complete role → binding map. Unfilled roles carry source `none`."""
    product: RoleBinding = Field(default_factory=RoleBinding)
    design: RoleBinding = Field(default_factory=RoleBinding)
    color: RoleBinding = Field(default_factory=RoleBinding)

    def get(self, role: Role) -> RoleBinding:
        return getattr(self, role.value)

    def is_filled(self, role: Role) -> bool:
        return self.get(role).filled

    def primary_artifact(self) -> Optional[StoredArtifact]:
        """First bound artifact in role order, used as the subject of edits."""
        for role in ROLE_ORDER:
            binding = self.get(role)
            if binding.artifact is not None:
                return binding.artifact
        return None


# ============================================
# DECISIONS & PLANS
# ============================================

class WorkflowDecision(BaseModel):
    """The routing decision for one request or one step"""
    operation: Operation
    workflow_type: Optional[WorkflowType] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    requires_files: bool = False
    explanation: str = ""
    source: DecisionSource = DecisionSource.HEURISTIC

    @property
    def endpoint(self) -> str:
        return OPERATION_ENDPOINTS[self.operation]


class StepPlan(BaseModel):
    """Ordered steps built once per request"""
    model_config = ConfigDict(frozen=True)

    steps: Tuple[WorkflowDecision, ...]
    sequential: bool = True
    context_chain: bool = False

    @property
    def is_multi_step(self) -> bool:
        return len(self.steps) > 1


class StepResult(BaseModel):
    """Outcome of one executed step"""
    step_index: int
    operation: Operation
    status: StepStatus
    artifact: Optional[StoredArtifact] = None
    text: Optional[str] = None
    error: Optional[str] = None
    method: Optional[str] = None


# ============================================
# API REQUEST / RESPONSE MODELS
# ============================================

class OrchestrateRequest(BaseModel):
    """A user request: free text plus media plus conversation identity"""
    message: Optional[str] = None
    media_inputs: List[MediaInput] = Field(default_factory=list)
    explicit_reference: Optional[ReferencePointer] = None
    reference_mode: Optional[Role] = None
    conversation_id: str = "default"
    stream: bool = False


class Recommendation(BaseModel):
    """A suggested follow-up action"""
    operation: Operation
    label: str
    description: str = ""


class ErrorDetail(BaseModel):
    """Structured, user-safe error"""
    error_type: str
    severity: Literal["low", "medium", "high"]
    user_message: str
    system_message: str
    action: str


class OrchestrateResponse(BaseModel):
    """Everything the engine returns for one request"""
    status: ResponseStatus
    message: str
    decision: Optional[WorkflowDecision] = None
    plan: Optional[StepPlan] = None
    role_assignment: Optional[RoleAssignment] = None
    resolved_reference: Optional[ResolvedReference] = None
    step_results: List[StepResult] = Field(default_factory=list)
    final_artifact: Optional[StoredArtifact] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    partial_failures: List[str] = Field(default_factory=list)
    error: Optional[ErrorDetail] = None
