"""
FastAPI Main Application - HTTP surface of the intent engine.

1. Client sends a message plus images (uploads, URLs, base64, presets)
2. Engine normalizes, resolves references, classifies and plans
3. Backends run the plan step by step
4. Client gets the structured response
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional
import json
import logging

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError

from intent_engine.config import settings
from intent_engine.engine import EMPTY_REQUEST_MESSAGE, IntentEngine
from intent_engine.models import (
    ConversationTurn,
    MediaInput,
    OrchestrateRequest,
    OrchestrateResponse,
    ReferencePointer,
    Role,
    SourceKind,
)


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

DEFAULT_COMPOSE_MESSAGE = "Create a design composition using the uploaded images"


# ============================================
# FASTAPI APP INITIALIZATION
# ============================================

app = FastAPI(
    title="Creative Intent Engine",
    description="Routes conversational design requests to generation backends",
    version="0.1.0"
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache
def get_engine() -> IntentEngine:
    """Process-wide engine instance"""
    return IntentEngine()


# ============================================
# HELPER FUNCTIONS
# ============================================

async def upload_to_media_input(upload: Optional[UploadFile], field_name: str) -> Optional[MediaInput]:
    if upload is None or not upload.filename:
        return None
    return MediaInput(
        source_kind=SourceKind.UPLOAD,
        raw_ref=await upload.read(),
        field_name_hint=field_name,
        filename=upload.filename,
        content_type=upload.content_type,
    )


def text_media_input(value: Optional[str], kind: SourceKind, field_name: str) -> Optional[MediaInput]:
    if not value or not value.strip():
        return None
    return MediaInput(source_kind=kind, raw_ref=value.strip(), field_name_hint=field_name)


def parse_reference(explicit_reference: Optional[str]) -> Optional[ReferencePointer]:
    """Parse the JSON-encoded explicit reference form field."""
    if not explicit_reference:
        return None
    try:
        return ReferencePointer(**json.loads(explicit_reference))
    except (json.JSONDecodeError, TypeError, PydanticValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid explicit_reference: {exc}")


# ============================================
# API ENDPOINTS
# ============================================

@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "service": "Creative Intent Engine",
        "status": "running",
        "version": "0.1.0",
        "model": settings.llm_model
    }


@app.post("/orchestrate", response_model=OrchestrateResponse)
async def orchestrate(
    message: Optional[str] = Form(None),
    conversation_id: str = Form("default"),
    explicit_reference: Optional[str] = Form(None, description="JSON: {id?, timestamp?, text?}"),
    reference_mode: Optional[Role] = Form(None),
    stream: bool = Form(False),
    product_image: Optional[UploadFile] = File(None),
    design_image: Optional[UploadFile] = File(None),
    color_image: Optional[UploadFile] = File(None),
    image: Optional[UploadFile] = File(None),
    product_image_url: Optional[str] = Form(None),
    design_image_url: Optional[str] = Form(None),
    color_image_url: Optional[str] = Form(None),
    product_image_base64: Optional[str] = Form(None),
    design_image_base64: Optional[str] = Form(None),
    color_image_base64: Optional[str] = Form(None),
    preset_product_type: Optional[str] = Form(None),
    preset_design_style: Optional[str] = Form(None),
    preset_color_palette: Optional[str] = Form(None),
    engine: IntentEngine = Depends(get_engine),
):
    """
    Main endpoint: route a conversational request and run it.

    Example:
    - Upload product_image + design_image, no message → full product/design composition
    - Message "make it bigger" after a design → upscales the previous result
    """
    candidates: List[Optional[MediaInput]] = [
        await upload_to_media_input(product_image, "product_image"),
        await upload_to_media_input(design_image, "design_image"),
        await upload_to_media_input(color_image, "color_image"),
        await upload_to_media_input(image, "image"),
        text_media_input(product_image_url, SourceKind.URL, "product_image_url"),
        text_media_input(design_image_url, SourceKind.URL, "design_image_url"),
        text_media_input(color_image_url, SourceKind.URL, "color_image_url"),
        text_media_input(product_image_base64, SourceKind.INLINE, "product_image_base64"),
        text_media_input(design_image_base64, SourceKind.INLINE, "design_image_base64"),
        text_media_input(color_image_base64, SourceKind.INLINE, "color_image_base64"),
        text_media_input(preset_product_type, SourceKind.PRESET, "preset_product_type"),
        text_media_input(preset_design_style, SourceKind.PRESET, "preset_design_style"),
        text_media_input(preset_color_palette, SourceKind.PRESET, "preset_color_palette"),
    ]
    media_inputs = [m for m in candidates if m is not None]

    text = (message or "").strip()
    if not text and not media_inputs:
        raise HTTPException(status_code=400, detail=EMPTY_REQUEST_MESSAGE)
    if not text:
        text = DEFAULT_COMPOSE_MESSAGE

    request = OrchestrateRequest(
        message=text,
        media_inputs=media_inputs,
        explicit_reference=parse_reference(explicit_reference),
        reference_mode=reference_mode,
        conversation_id=conversation_id,
        stream=stream,
    )
    logger.info(f"[API] {conversation_id}: '{text[:80]}' with {len(media_inputs)} media input(s)")

    return await engine.handle(request)


@app.get("/history/{conversation_id}", response_model=List[ConversationTurn])
async def read_history(conversation_id: str, engine: IntentEngine = Depends(get_engine)):
    """Read-only view of a conversation's turns"""
    return await engine.history.read(conversation_id)


@app.get("/files/{path:path}")
async def download_file(path: str):
    """Serve an artifact stored by the local object storage."""
    root = Path(settings.storage_root).resolve()
    file_path = (root / path).resolve()
    if root not in file_path.parents or not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(file_path)
