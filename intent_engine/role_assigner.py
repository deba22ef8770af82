"""
Role Assigner - Decides which role (product / design / color) a resolved
reference fills, alongside the caller's own uploads and presets.

Rules are ordered guard functions over an immutable RoleContext. The first
guard that returns a role list wins:

1. explicit instruction phrases in the message
2. the caller's reference_mode flag (moved to the next free role on conflict)
3. demotion when the caller picked a different product preset than the one
   inherited from the referenced turn
4. semantic inference of the missing role
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import re
import logging

from intent_engine.models import (
    ROLE_ORDER,
    ResolvedReference,
    Role,
    RoleAssignment,
    RoleBinding,
    RoleSource,
    SourceKind,
)
from intent_engine.input_normalizer import NormalizedMedia
from intent_engine.reference_resolver import extract_preset_category


logger = logging.getLogger(__name__)


# ============================================
# PRECOMPILED PATTERNS
# ============================================

RE_EXPLICIT_ROLE_INSTRUCTION = re.compile(
    r'\b(?:use|treat|take|apply|keep)\s+(?:the\s+)?'
    r'(?:reference|ref|previous\s+(?:image|result|one)|last\s+(?:image|result|one)|it|this|that)\s+'
    r'(?:image\s+)?(?:as|for)\s+(?:the\s+|its\s+|my\s+)?'
    r'([a-z ,&/]+?)(?:\s+only)?(?:[.!?]|$)',
    re.IGNORECASE,
)
RE_ROLE_WORD = re.compile(r'\b(product|design|pattern|style|colou?rs?|palette)\b', re.IGNORECASE)
RE_ROLE_NEGATION = re.compile(r'\b(?:but\s+not|not|except|excluding|without)\b', re.IGNORECASE)

ROLE_WORDS = {
    "product": Role.PRODUCT,
    "design": Role.DESIGN,
    "pattern": Role.DESIGN,
    "style": Role.DESIGN,
    "color": Role.COLOR,
    "colors": Role.COLOR,
    "colour": Role.COLOR,
    "colours": Role.COLOR,
    "palette": Role.COLOR,
}


def role_from_field_name(field_name: str) -> Optional[Role]:
    """`product_image`, `design_image_url`, `preset_color_palette` → role."""
    lowered = (field_name or "").lower()
    if "product" in lowered:
        return Role.PRODUCT
    if "design" in lowered or "style" in lowered:
        return Role.DESIGN
    if "color" in lowered or "colour" in lowered or "palette" in lowered:
        return Role.COLOR
    return None


def parse_explicit_roles(message: str) -> List[Role]:
    """Roles named by an explicit 'use the reference as ...' instruction."""
    match = RE_EXPLICIT_ROLE_INSTRUCTION.search(message or "")
    if not match:
        return []
    roles: List[Role] = []
    # roles after a negation ("for design, not color") are excluded
    named = RE_ROLE_NEGATION.split(match.group(1), 1)[0]
    for word in RE_ROLE_WORD.findall(named):
        role = ROLE_WORDS[word.lower()]
        if role not in roles:
            roles.append(role)
    return roles


# ============================================
# CONTEXT
# ============================================

@dataclass(frozen=True)
class RoleContext:
    """Everything the guards may look at. Never mutated."""
    explicit: Dict[Role, RoleBinding] = field(default_factory=dict)
    reference: ResolvedReference = field(default_factory=ResolvedReference)
    reference_mode: Optional[Role] = None
    message: str = ""

    def missing(self, exclude: Optional[Role] = None) -> List[Role]:
        return [r for r in ROLE_ORDER if r not in self.explicit and r != exclude]


def build_role_context(
    normalized: List[NormalizedMedia],
    reference: ResolvedReference,
    reference_mode: Optional[Role] = None,
    message: str = "",
) -> RoleContext:
    """Bind uploads and presets to their own roles. Uploads beat presets for a role."""
    explicit: Dict[Role, RoleBinding] = {}
    unassigned: List[NormalizedMedia] = []

    for item in normalized:
        role = role_from_field_name(item.media_input.field_name_hint)
        if role is None:
            unassigned.append(item)
            continue
        is_preset = item.media_input.source_kind == SourceKind.PRESET
        binding = RoleBinding(
            source=RoleSource.PRESET_TOKEN if is_preset else RoleSource.EXPLICIT_UPLOAD,
            artifact=item.artifact,
            token=item.media_input.raw_ref if is_preset and isinstance(item.media_input.raw_ref, str) else None,
        )
        current = explicit.get(role)
        if current is None or (current.source == RoleSource.PRESET_TOKEN and not is_preset):
            explicit[role] = binding

    # Generic `image` fields fill free roles in order
    for item in unassigned:
        free = [r for r in ROLE_ORDER if r not in explicit]
        if not free:
            break
        explicit[free[0]] = RoleBinding(source=RoleSource.EXPLICIT_UPLOAD, artifact=item.artifact)

    return RoleContext(
        explicit=explicit,
        reference=reference,
        reference_mode=reference_mode,
        message=message,
    )


# ============================================
# GUARDS (priority order)
# ============================================

Guard = Callable[[RoleContext], Optional[List[Role]]]


def guard_explicit_instruction(ctx: RoleContext) -> Optional[List[Role]]:
    roles = parse_explicit_roles(ctx.message)
    if roles:
        logger.info(f"[ROLES] Explicit instruction: reference → {[r.value for r in roles]}")
        return roles
    return None


def guard_reference_mode(ctx: RoleContext) -> Optional[List[Role]]:
    mode = ctx.reference_mode
    if mode is None:
        return None
    if mode not in ctx.explicit:
        return [mode]
    free = ctx.missing(exclude=mode)
    if free:
        logger.info(f"[ROLES] reference_mode {mode.value} already filled, using {free[0].value}")
        return [free[0]]
    logger.info(f"[ROLES] reference_mode {mode.value} conflicts and no role is free")
    return []


def guard_product_demotion(ctx: RoleContext) -> Optional[List[Role]]:
    inherited = ctx.reference.inherited_role_hints.get(Role.PRODUCT)
    selected = ctx.explicit.get(Role.PRODUCT)
    if not inherited or selected is None or selected.source != RoleSource.PRESET_TOKEN or not selected.token:
        return None
    if extract_preset_category(selected.token) == inherited:
        return None
    demoted = [r for r in (Role.DESIGN, Role.COLOR) if r not in ctx.explicit]
    logger.info(f"[ROLES] New product preset replaces inherited '{inherited}', reference demoted to {[r.value for r in demoted]}")
    return demoted


def guard_semantic_inference(ctx: RoleContext) -> Optional[List[Role]]:
    if Role.PRODUCT not in ctx.explicit:
        return [Role.PRODUCT]
    if Role.DESIGN not in ctx.explicit:
        roles = [Role.DESIGN]
        if Role.COLOR not in ctx.explicit:
            roles.append(Role.COLOR)
        return roles
    if Role.COLOR not in ctx.explicit:
        return [Role.COLOR]
    return []


GUARDS: List[Guard] = [
    guard_explicit_instruction,
    guard_reference_mode,
    guard_product_demotion,
    guard_semantic_inference,
]


# ============================================
# ASSIGNMENT
# ============================================

def reference_roles(ctx: RoleContext) -> List[Role]:
    """Roles the resolved reference should fill."""
    if ctx.reference.is_empty:
        return []
    for guard in GUARDS:
        roles = guard(ctx)
        if roles is not None:
            return roles
    return []


def assign_roles(ctx: RoleContext) -> RoleAssignment:
    """Produce a complete role map. Unfilled roles are explicit `none` bindings."""
    bindings: Dict[Role, RoleBinding] = dict(ctx.explicit)

    # every role the reference fills is bound to its primary artifact
    for role in reference_roles(ctx):
        bindings[role] = RoleBinding(
            source=RoleSource.RESOLVED_REFERENCE,
            artifact=ctx.reference.artifacts[0],
            token=ctx.reference.inherited_role_hints.get(role),
        )

    assignment = RoleAssignment(**{role.value: bindings.get(role, RoleBinding()) for role in ROLE_ORDER})
    logger.info(
        "[ROLES] " + ", ".join(f"{role.value}={assignment.get(role).source.value}" for role in ROLE_ORDER)
    )
    return assignment
