"""
Reference Chain Resolver - Follows "this / that / it" back through history.

A reference starts at a turn named by id or by timestamp, collects the
artifacts produced there, and keeps walking to earlier turns while the text
still points backward and nothing concrete was found (or an explicit reply
link says to continue). Walks are bounded by a visited set and a hop cap, so
cyclic reply links terminate.
"""

import re
import logging
from typing import Dict, List, Optional, Tuple

from intent_engine.config import settings
from intent_engine.error_handler import ReferenceResolutionFailure
from intent_engine.models import (
    ConversationTurn,
    MediaType,
    ReferencePointer,
    ResolvedReference,
    Role,
    StoredArtifact,
    TurnRole,
)
from intent_engine.pattern_matching import detect_media_preference


logger = logging.getLogger(__name__)


# ============================================
# PRECOMPILED PATTERNS
# ============================================

RE_BACK_REFERENCE = re.compile(r'\b(this|that|it)\b', re.IGNORECASE)

# Legacy assistant messages embedded result URLs as key/value text
RE_LEGACY_OUTPUT_KEY = re.compile(
    r'"?(?:firebaseOutputUrl|imageUrl|outputUrl|data_url|output_image|video_url)"?\s*[:=]\s*"?'
    r'((?:https?://|data:(?:image|video)/)[^\s"\'<>]+)',
    re.IGNORECASE,
)
RE_MEDIA_URL = re.compile(
    r'https?://[^\s"\'<>)]+?\.(?:png|jpe?g|webp|gif|mp4|mov|webm)(?:\?[^\s"\'<>)]*)?(?=[\s"\'<>),]|$)',
    re.IGNORECASE,
)

VIDEO_URI_MARKERS = (".mp4", ".mov", ".webm", "video/", "/video", "kling", "seedance", "video_")

# Preset naming conventions → role
PRESET_ROLE_PATTERNS: List[Tuple[re.Pattern, Role]] = [
    (re.compile(r'preset_product_type|/designs/', re.IGNORECASE), Role.PRODUCT),
    (re.compile(r'preset_color_palette|/colors?/', re.IGNORECASE), Role.COLOR),
    (re.compile(r'preset_design_style|/defaults/|/styles?/', re.IGNORECASE), Role.DESIGN),
]


# ============================================
# HELPERS
# ============================================

def has_back_reference(text: Optional[str]) -> bool:
    return bool(text and RE_BACK_REFERENCE.search(text))


def classify_media_type(uri: str) -> MediaType:
    """Classify a URI as image or video by extension and endpoint markers."""
    lowered = uri.lower()
    if any(marker in lowered for marker in VIDEO_URI_MARKERS):
        return MediaType.VIDEO
    return MediaType.IMAGE


def _artifact_from_uri(uri: str) -> StoredArtifact:
    media_type = classify_media_type(uri)
    content_type = "video/mp4" if media_type == MediaType.VIDEO else "image/png"
    return StoredArtifact(uri=uri, content_type=content_type, media_type=media_type)


def extract_artifacts(turn: ConversationTurn) -> List[StoredArtifact]:
    """
    Artifacts produced by a turn.

    Structured `produced_artifacts` win; the free-text scan only runs for turns
    recorded without them.
    """
    if turn.produced_artifacts:
        return list(turn.produced_artifacts)

    uris: List[str] = []
    for match in RE_LEGACY_OUTPUT_KEY.finditer(turn.text or ""):
        uris.append(match.group(1).rstrip(".,;"))
    if not uris:
        uris = [m.group(0) for m in RE_MEDIA_URL.finditer(turn.text or "")]

    seen = set()
    artifacts = []
    for uri in uris:
        if uri not in seen:
            seen.add(uri)
            artifacts.append(_artifact_from_uri(uri))
    return artifacts


def extract_preset_category(token: str) -> str:
    """`/designs/tshirt/tshirt1.jpg` → `tshirt`; other tokens → file stem."""
    value = token.split("=", 1)[-1].strip()
    parts = [p for p in value.split("/") if p]
    if "designs" in parts:
        idx = parts.index("designs")
        if idx + 1 < len(parts) - 1:
            return parts[idx + 1].lower()
    if not parts:
        return value.lower()
    return re.sub(r'\d*\.[a-z0-9]+$', '', parts[-1].lower())


def classify_preset_token(token: str) -> Optional[Tuple[Role, str]]:
    """Map a preset-style input reference to (role, category) by naming convention."""
    for pattern, role in PRESET_ROLE_PATTERNS:
        if pattern.search(token):
            return role, extract_preset_category(token)
    return None


# ============================================
# RESOLVER
# ============================================

class ReferenceChainResolver:
    """Resolves a reference pointer to the artifacts it ultimately designates"""

    def __init__(self, max_hops: Optional[int] = None, tolerance_seconds: Optional[float] = None):
        self.max_hops = max_hops or settings.reference_max_hops
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None
            else settings.reference_timestamp_tolerance_seconds
        )

    def resolve(
        self,
        history: List[ConversationTurn],
        pointer: Optional[ReferencePointer] = None,
        message: str = "",
    ) -> ResolvedReference:
        """Resolve a pointer (or the implicit latest result) to a ResolvedReference."""
        try:
            if pointer is None or (pointer.id is None and pointer.timestamp is None):
                return self._latest_result(history, message)
            return self._walk(history, self._find_origin(history, pointer), pointer)
        except ReferenceResolutionFailure as exc:
            logger.warning(f"[REFERENCE] Resolution failed, continuing without reference: {exc}")
            return ResolvedReference()

    # ------------------------------------------
    # Origin lookup
    # ------------------------------------------

    def _find_origin(self, history: List[ConversationTurn], pointer: ReferencePointer) -> int:
        if pointer.id is not None:
            for index, turn in enumerate(history):
                if turn.id == pointer.id:
                    return index
            raise ReferenceResolutionFailure(f"no turn with id {pointer.id}")

        candidates = [
            (index, turn) for index, turn in enumerate(history)
            if abs(turn.timestamp - pointer.timestamp) <= self.tolerance_seconds
        ]
        if not candidates:
            raise ReferenceResolutionFailure(
                f"no turn within {self.tolerance_seconds}s of timestamp {pointer.timestamp}"
            )

        # Closest turn wins; user turns break ties
        index, _ = min(
            candidates,
            key=lambda c: (abs(c[1].timestamp - pointer.timestamp), c[1].role != TurnRole.USER),
        )
        return index

    @staticmethod
    def _index_by_id(history: List[ConversationTurn], turn_id: str) -> Optional[int]:
        for index, turn in enumerate(history):
            if turn.id == turn_id:
                return index
        return None

    # ------------------------------------------
    # Chain walk
    # ------------------------------------------

    @staticmethod
    def _artifacts_at(history: List[ConversationTurn], index: int) -> List[StoredArtifact]:
        """A user turn's results live in the assistant turn right after it."""
        turn = history[index]
        if turn.role == TurnRole.ASSISTANT:
            return extract_artifacts(turn)
        if index + 1 < len(history) and history[index + 1].role == TurnRole.ASSISTANT:
            return extract_artifacts(history[index + 1])
        return []

    def _previous_node(self, history: List[ConversationTurn], index: int) -> Optional[int]:
        turn = history[index]
        if turn.reference_to:
            linked = self._index_by_id(history, turn.reference_to)
            if linked is not None:
                return linked
        for earlier in range(index - 1, -1, -1):
            if self._artifacts_at(history, earlier):
                return earlier
        return None

    def _walk(self, history: List[ConversationTurn], origin: int, pointer: ReferencePointer) -> ResolvedReference:
        visited = set()
        artifacts: List[StoredArtifact] = []
        seen_uris = set()
        trail: List[str] = []
        hints: Dict[Role, str] = {}
        hops = 0

        index: Optional[int] = origin
        while index is not None and hops < self.max_hops:
            turn = history[index]
            key = turn.id or f"#{index}"
            if key in visited:
                logger.info(f"[REFERENCE] Cycle detected at {key}, stopping")
                break
            visited.add(key)
            hops += 1

            text = pointer.text if hops == 1 and pointer.text else turn.text
            if text:
                trail.append(text.strip())

            found = self._artifacts_at(history, index)
            for artifact in found:
                if artifact.uri not in seen_uris:
                    seen_uris.add(artifact.uri)
                    artifacts.append(artifact)

            for ref in turn.input_media_refs:
                classified = classify_preset_token(ref)
                if classified:
                    hints.setdefault(classified[0], classified[1])

            if not has_back_reference(text):
                break
            if found and not turn.reference_to:
                break
            index = self._previous_node(history, index)

        if hops >= self.max_hops:
            logger.warning(f"[REFERENCE] Hop limit {self.max_hops} reached")

        logger.info(f"[REFERENCE] Resolved {len(artifacts)} artifact(s) in {hops} hop(s)")
        return ResolvedReference(
            artifacts=artifacts,
            text_trail=" → ".join(trail),
            inherited_role_hints=hints,
            hop_count=hops,
        )

    # ------------------------------------------
    # Implicit reference
    # ------------------------------------------

    def _latest_result(self, history: List[ConversationTurn], message: str) -> ResolvedReference:
        """Most recent assistant artifact, preferring the media type the message asks about."""
        preferred = detect_media_preference(message)
        latest: Optional[Tuple[int, List[StoredArtifact]]] = None

        for index in range(len(history) - 1, -1, -1):
            turn = history[index]
            if turn.role != TurnRole.ASSISTANT:
                continue
            found = extract_artifacts(turn)
            if not found:
                continue
            if latest is None:
                latest = (index, found)
            if preferred is None:
                break
            typed = [a for a in found if a.media_type == preferred]
            if typed:
                latest = (index, typed)
                break

        if latest is None:
            return ResolvedReference()

        index, found = latest
        hints: Dict[Role, str] = {}
        if index > 0 and history[index - 1].role == TurnRole.USER:
            for ref in history[index - 1].input_media_refs:
                classified = classify_preset_token(ref)
                if classified:
                    hints.setdefault(classified[0], classified[1])

        logger.info(f"[REFERENCE] Using latest result from turn #{index} ({len(found)} artifact(s))")
        return ResolvedReference(
            artifacts=found,
            text_trail=history[index].text.strip(),
            inherited_role_hints=hints,
            hop_count=1,
        )
