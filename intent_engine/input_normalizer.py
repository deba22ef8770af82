"""
Input Normalizer - Turns every media input into a stored artifact.

Uploads, remote or local-relative URLs, inline base64 payloads and named
presets are all resolved to bytes, validated, converted to a backend-supported
encoding when needed, and persisted to object storage. Inputs are processed
concurrently; a failure on one input never blocks the others.
"""

from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse
import asyncio
import base64
import binascii
import logging
import mimetypes
import re

import httpx
from PIL import Image, UnidentifiedImageError

from intent_engine.config import settings
from intent_engine.error_handler import NormalizationError
from intent_engine.models import MediaInput, MediaType, SourceKind, StoredArtifact
from intent_engine.storage import ObjectStorage, build_object_path


logger = logging.getLogger(__name__)


# ============================================
# FORMAT TABLES
# ============================================

RE_DATA_URL_PREFIX = re.compile(r'^data:([a-z]+/[a-z0-9.+-]+);base64,', re.IGNORECASE)
RE_WHITESPACE = re.compile(r'\s+')

# Pillow format name → content type accepted by the generation backends
SUPPORTED_IMAGE_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
}

SUPPORTED_EXTENSIONS = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}

CANONICAL_CONTENT_TYPE = "image/png"
CANONICAL_EXTENSION = ".png"

MB = 1024 * 1024


def sniff_video(data: bytes) -> Optional[str]:
    """Return a video content type when the bytes carry a known container signature."""
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return "video/quicktime" if data[8:10] == b"qt" else "video/mp4"
    if data[:4] == b"\x1aE\xdf\xa3":
        return "video/webm"
    return None


def extension_for(content_type: str) -> str:
    for ext, ctype in SUPPORTED_EXTENSIONS.items():
        if ctype == content_type:
            return ext
    return mimetypes.guess_extension(content_type) or ""


def convert_to_canonical(data: bytes) -> bytes:
    """Re-encode an image Pillow can read into the canonical PNG encoding."""
    with Image.open(BytesIO(data)) as img:
        img.load()
        has_alpha = img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info)
        converted = img.convert("RGBA" if has_alpha else "RGB")
        out = BytesIO()
        converted.save(out, format=settings.canonical_image_format)
        return out.getvalue()


# ============================================
# RESULT TYPES
# ============================================

@dataclass
class NormalizedMedia:
    """A media input paired with the artifact it resolved to"""
    media_input: MediaInput
    artifact: StoredArtifact


@dataclass
class NormalizationOutcome:
    """Joined result of normalizing every input of a request"""
    normalized: List[NormalizedMedia] = field(default_factory=list)
    failures: List[NormalizationError] = field(default_factory=list)

    @property
    def required_failures(self) -> List[NormalizationError]:
        return [f for f in self.failures if f.required]

    @property
    def optional_failures(self) -> List[NormalizationError]:
        return [f for f in self.failures if not f.required]


# ============================================
# NORMALIZER
# ============================================

class InputNormalizer:
    """Resolves, validates, converts and persists media inputs"""

    def __init__(self, storage: ObjectStorage, http_client: Optional[httpx.AsyncClient] = None):
        self.storage = storage
        self._http_client = http_client

    async def normalize_all(self, inputs: List[MediaInput], conversation_id: str) -> NormalizationOutcome:
        """Normalize all inputs concurrently and collect per-input failures."""
        outcome = NormalizationOutcome()
        if not inputs:
            return outcome

        results = await asyncio.gather(
            *(self.normalize(media_input, conversation_id) for media_input in inputs),
            return_exceptions=True,
        )

        for media_input, result in zip(inputs, results):
            if isinstance(result, NormalizationError):
                logger.warning(f"[NORMALIZE] Failed {media_input.field_name_hint or media_input.source_kind.value}: {result}")
                outcome.failures.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                outcome.normalized.append(NormalizedMedia(media_input=media_input, artifact=result))

        logger.info(
            f"[NORMALIZE] {len(outcome.normalized)} normalized, {len(outcome.failures)} failed "
            f"({len(outcome.required_failures)} required)"
        )
        return outcome

    async def normalize(self, media_input: MediaInput, conversation_id: str) -> StoredArtifact:
        """Resolve one input to a stored artifact or raise NormalizationError."""
        field_name = media_input.field_name_hint
        try:
            data, declared_type, name = await self._load(media_input)
            if not data:
                raise NormalizationError("empty payload")

            self._check_size(data, name)
            data, content_type, media_type = self._validate_format(data, declared_type, name)

            base_name = Path(name).stem or field_name or "media"
            path = build_object_path(conversation_id, "input", f"{base_name}{extension_for(content_type)}")
            try:
                uri = await self.storage.put(data, path, content_type)
            except OSError as exc:
                raise NormalizationError(f"could not persist media: {exc}") from exc

            return StoredArtifact(
                uri=uri,
                content_type=content_type,
                size_bytes=len(data),
                media_type=media_type,
            )
        except NormalizationError as exc:
            if exc.field_name != field_name or exc.required != media_input.required:
                raise NormalizationError(str(exc), field_name=field_name, required=media_input.required) from exc
            raise

    # ------------------------------------------
    # Loading
    # ------------------------------------------

    async def _load(self, media_input: MediaInput) -> Tuple[bytes, Optional[str], str]:
        """Return (bytes, declared content type, name) for any source kind."""
        kind = media_input.source_kind
        raw = media_input.raw_ref
        name = media_input.filename or ""

        if kind == SourceKind.UPLOAD:
            if not isinstance(raw, (bytes, bytearray)):
                raise NormalizationError("upload payload must be bytes")
            return bytes(raw), media_input.content_type, name or media_input.field_name_hint

        if isinstance(raw, (bytes, bytearray)):
            raw = bytes(raw).decode("utf-8", errors="replace")
        raw = raw.strip()

        if kind == SourceKind.INLINE:
            data, content_type = self._decode_inline(raw)
            return data, content_type or media_input.content_type, name or media_input.field_name_hint

        if kind == SourceKind.PRESET:
            data = await self._read_preset(raw)
            if data is not None:
                guessed = mimetypes.guess_type(raw)[0]
                return data, guessed, name or Path(raw).name

        data, content_type = await self._fetch(raw)
        return data, content_type or media_input.content_type, name or Path(urlparse(raw).path).name

    @staticmethod
    def _decode_inline(raw: str) -> Tuple[bytes, Optional[str]]:
        content_type = None
        match = RE_DATA_URL_PREFIX.match(raw)
        if match:
            content_type = match.group(1).lower()
            raw = raw[match.end():]
        try:
            return base64.b64decode(RE_WHITESPACE.sub("", raw), validate=True), content_type
        except (binascii.Error, ValueError) as exc:
            raise NormalizationError(f"invalid base64 payload: {exc}") from exc

    async def _read_preset(self, preset_path: str) -> Optional[bytes]:
        """Read a preset from the local preset root, or None when it isn't there."""
        if not settings.preset_root or preset_path.startswith(("http://", "https://")):
            return None
        root = Path(settings.preset_root).resolve()
        candidate = (root / preset_path.lstrip("/")).resolve()
        if root not in candidate.parents or not candidate.is_file():
            return None
        logger.debug(f"[NORMALIZE] Preset read from disk: {candidate}")
        return await asyncio.to_thread(candidate.read_bytes)

    async def _fetch(self, url: str) -> Tuple[bytes, Optional[str]]:
        if url.startswith("/"):
            url = urljoin(settings.local_asset_base_url.rstrip("/") + "/", url.lstrip("/"))
        if not url.startswith(("http://", "https://")):
            raise NormalizationError(f"unsupported URL: {url}")

        try:
            if self._http_client is not None:
                response = await self._http_client.get(url, timeout=settings.fetch_timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=settings.fetch_timeout_seconds, follow_redirects=True) as client:
                    response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NormalizationError(f"fetch failed for {url}: {exc}") from exc

        content_type = response.headers.get("content-type", "").split(";")[0].strip().lower() or None
        return response.content, content_type

    # ------------------------------------------
    # Validation
    # ------------------------------------------

    @staticmethod
    def _check_size(data: bytes, name: str) -> None:
        size_mb = len(data) / MB
        if size_mb > settings.max_upload_size_mb:
            raise NormalizationError(
                f"file is {size_mb:.1f}MB, over the {settings.max_upload_size_mb}MB limit"
            )
        if size_mb > settings.soft_warn_size_mb:
            logger.warning(f"[NORMALIZE] Large input {name or 'media'}: {size_mb:.1f}MB")

    @staticmethod
    def _validate_format(data: bytes, declared_type: Optional[str], name: str) -> Tuple[bytes, str, MediaType]:
        """
        Detect the real format and convert unsupported images to PNG.

        Falls back to declared MIME type / extension checks when the bytes
        can't be identified.
        """
        video_type = sniff_video(data)
        if video_type:
            return data, video_type, MediaType.VIDEO

        try:
            with Image.open(BytesIO(data)) as img:
                detected = (img.format or "").upper()
        except UnidentifiedImageError:
            detected = None

        if detected in SUPPORTED_IMAGE_FORMATS:
            return data, SUPPORTED_IMAGE_FORMATS[detected], MediaType.IMAGE

        if detected:
            logger.info(f"[NORMALIZE] Converting {detected} to {settings.canonical_image_format}")
            try:
                return convert_to_canonical(data), CANONICAL_CONTENT_TYPE, MediaType.IMAGE
            except (OSError, ValueError) as exc:
                raise NormalizationError(f"could not convert {detected} image: {exc}") from exc

        fallback_type = (declared_type or "").lower()
        if fallback_type not in settings.supported_content_types:
            fallback_type = SUPPORTED_EXTENSIONS.get(Path(name).suffix.lower(), "")
        if fallback_type in settings.supported_content_types:
            logger.warning(f"[NORMALIZE] Format detection failed for {name or 'media'}, accepting as {fallback_type}")
            media_type = MediaType.VIDEO if fallback_type.startswith("video/") else MediaType.IMAGE
            return data, fallback_type, media_type

        raise NormalizationError("unrecognized or unsupported media format")
