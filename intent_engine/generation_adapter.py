"""
Generation Adapter - One calling convention for every generation backend.

Backends answer in different shapes (inline base64, data URLs, remote URLs
under assorted keys). The adapter normalizes all of them into a
GenerationResult tagged with the method that produced it. Composition tries
the multimodal backend first and falls back once to the text-only backend.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol
import base64
import binascii
import logging
import re

import httpx

from intent_engine.config import settings
from intent_engine.error_handler import BackendError
from intent_engine.models import (
    OPERATION_ENDPOINTS,
    MediaType,
    Operation,
    VIDEO_OUTPUT_OPERATIONS,
)
from intent_engine.outcome import Err, Ok, Result, with_fallback


logger = logging.getLogger(__name__)


# Keys backends use for their output, most specific first
OUTPUT_URL_KEYS = ("firebaseOutputUrl", "data_url", "outputUrl", "output_image", "imageUrl", "video_url", "videoUrl", "url")
OUTPUT_TEXT_KEYS = ("analysis", "description", "enhancedPrompt", "enhanced_prompt", "title", "text", "result")

RE_DATA_URL = re.compile(r'^data:([a-z]+/[a-z0-9.+-]+);base64,(.*)$', re.IGNORECASE | re.DOTALL)

METHOD_MULTIMODAL = "multimodal"
METHOD_TEXT_ONLY = "text_only"
METHOD_DIRECT = "direct"


@dataclass
class GenerationResult:
    """Normalized output of one backend call"""
    operation: Operation
    method: str
    uri: Optional[str] = None
    data: Optional[bytes] = None
    content_type: str = "image/png"
    media_type: MediaType = MediaType.IMAGE
    text: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_media(self) -> bool:
        return self.uri is not None or self.data is not None


class GenerationBackend(Protocol):
    """A remote generation service"""

    async def invoke(self, operation: Operation, parameters: Dict[str, Any], media_refs: Dict[str, str]) -> Dict[str, Any]:
        """Run an operation and return the backend's raw JSON payload. Raises BackendError."""
        ...


class HttpGenerationBackend:
    """Posts JSON to `<base_url><endpoint>`"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        path: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.backend_base_url).rstrip("/")
        self.path = path
        self._client = client

    async def invoke(self, operation: Operation, parameters: Dict[str, Any], media_refs: Dict[str, str]) -> Dict[str, Any]:
        url = f"{self.base_url}{self.path or OPERATION_ENDPOINTS[operation]}"
        body = {**parameters, **media_refs}
        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, timeout=settings.backend_timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=settings.backend_timeout_seconds) as client:
                    response = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise BackendError(f"{operation.value} request failed: {exc}", operation=operation.value) from exc

        if response.status_code >= 400:
            raise BackendError(
                f"{operation.value} returned HTTP {response.status_code}: {response.text[:200]}",
                operation=operation.value,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendError(f"{operation.value} returned non-JSON body", operation=operation.value) from exc

        if not isinstance(payload, dict):
            raise BackendError(f"{operation.value} returned unexpected payload", operation=operation.value)
        if payload.get("status") == "error" or payload.get("success") is False or payload.get("error"):
            raise BackendError(
                f"{operation.value} failed: {payload.get('error') or payload.get('message') or 'unknown error'}",
                operation=operation.value,
            )
        return payload


def normalize_output(payload: Dict[str, Any], operation: Operation, method: str) -> GenerationResult:
    """
    Turn any backend payload into a GenerationResult.

    Raises:
        BackendError: the payload carries neither media nor text
    """
    media_type = MediaType.VIDEO if operation in VIDEO_OUTPUT_OPERATIONS else MediaType.IMAGE
    result = GenerationResult(operation=operation, method=method, media_type=media_type, raw=payload)
    if media_type == MediaType.VIDEO:
        result.content_type = "video/mp4"

    for key in OUTPUT_URL_KEYS:
        value = payload.get(key)
        if not isinstance(value, str) or not value:
            continue
        match = RE_DATA_URL.match(value)
        if match:
            try:
                result.data = base64.b64decode(match.group(2), validate=True)
            except (binascii.Error, ValueError) as exc:
                raise BackendError(f"{operation.value} returned undecodable inline media", operation=operation.value) from exc
            result.content_type = match.group(1).lower()
            result.uri = value
        else:
            result.uri = value
        break

    if not result.has_media:
        inline = payload.get("image_base64") or payload.get("b64_json")
        if isinstance(inline, str) and inline:
            try:
                result.data = base64.b64decode(inline, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise BackendError(f"{operation.value} returned undecodable inline media", operation=operation.value) from exc
            result.uri = f"data:{result.content_type};base64,{inline}"

    for key in OUTPUT_TEXT_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            result.text = value.strip()
            break

    if not result.has_media and result.text is None:
        raise BackendError(f"{operation.value} returned no usable output", operation=operation.value)
    return result


class GenerationAdapter:
    """Dispatches operations to backends and normalizes what comes back"""

    def __init__(
        self,
        default_backend: Optional[GenerationBackend] = None,
        composition_multimodal: Optional[GenerationBackend] = None,
        composition_text: Optional[GenerationBackend] = None,
        backends: Optional[Dict[Operation, GenerationBackend]] = None,
    ):
        self.default_backend = default_backend or HttpGenerationBackend()
        self.composition_multimodal = composition_multimodal or HttpGenerationBackend(
            path=settings.composition_multimodal_path
        )
        self.composition_text = composition_text or HttpGenerationBackend(path=settings.composition_text_path)
        self.backends = dict(backends or {})

    async def _attempt(
        self,
        backend: GenerationBackend,
        method: str,
        operation: Operation,
        parameters: Dict[str, Any],
        media_refs: Dict[str, str],
    ) -> Result:
        try:
            payload = await backend.invoke(operation, parameters, media_refs)
            result = normalize_output(payload, operation, method)
        except BackendError as exc:
            logger.warning(f"[BACKEND] {operation.value} via {method} failed: {exc}")
            return Err(exc)
        logger.info(f"[BACKEND] {operation.value} via {method} succeeded")
        return Ok(result)

    async def generate(
        self,
        operation: Operation,
        parameters: Dict[str, Any],
        media_refs: Dict[str, str],
        stream: bool = False,
    ) -> Result:
        """Run one operation. Returns Ok(GenerationResult) or Err(BackendError)."""
        if operation == Operation.COMPOSE:
            return await self._compose(parameters, media_refs, stream)

        backend = self.backends.get(operation, self.default_backend)
        return await self._attempt(backend, METHOD_DIRECT, operation, parameters, media_refs)

    async def _compose(self, parameters: Dict[str, Any], media_refs: Dict[str, str], stream: bool) -> Result:
        async def text_only() -> Result:
            return await self._attempt(self.composition_text, METHOD_TEXT_ONLY, Operation.COMPOSE, parameters, {})

        if not media_refs and not stream:
            return await text_only()

        async def multimodal() -> Result:
            return await self._attempt(
                self.composition_multimodal, METHOD_MULTIMODAL, Operation.COMPOSE, parameters, media_refs
            )

        return await with_fallback(multimodal, text_only, label="composition")
