"""
Tests for the Generation Adapter

Tests cover:
1. Output normalization across backend payload shapes
2. Direct dispatch for single-backend operations
3. Multimodal → text-only composition fallback
4. HTTP backend error mapping
"""

import base64

import httpx
import pytest

from intent_engine.error_handler import BackendError
from intent_engine.models import MediaType, Operation

from conftest import FakeBackend, make_image_bytes


# ============================================
# NORMALIZE OUTPUT TESTS
# ============================================

class TestNormalizeOutput:
    """Backend payload shapes"""

    def test_remote_url(self):
        """The most specific URL key wins"""
        from intent_engine.generation_adapter import normalize_output

        result = normalize_output(
            {"imageUrl": "https://a.example.com/1.png", "firebaseOutputUrl": "https://b.example.com/2.png"},
            Operation.UPSCALE,
            "direct",
        )
        assert result.uri == "https://b.example.com/2.png"
        assert result.data is None

    def test_data_url_decoded(self):
        """Inline data URLs become bytes with their declared type"""
        from intent_engine.generation_adapter import normalize_output

        raw = make_image_bytes("PNG")
        payload = {"data_url": "data:image/webp;base64," + base64.b64encode(raw).decode()}
        result = normalize_output(payload, Operation.COMPOSE, "multimodal")

        assert result.data == raw
        assert result.content_type == "image/webp"

    def test_video_operation_marks_video(self):
        """Video operations produce video artifacts"""
        from intent_engine.generation_adapter import normalize_output

        result = normalize_output({"video_url": "https://v.example.com/x.mp4"}, Operation.CREATE_VIDEO, "direct")
        assert result.media_type == MediaType.VIDEO
        assert result.content_type == "video/mp4"

    def test_text_only_output(self):
        """Analysis results carry text and no media"""
        from intent_engine.generation_adapter import normalize_output

        result = normalize_output({"analysis": " A red mug "}, Operation.ANALYZE, "direct")
        assert result.text == "A red mug"
        assert not result.has_media

    def test_empty_payload_raises(self):
        """Nothing usable → BackendError"""
        from intent_engine.generation_adapter import normalize_output

        with pytest.raises(BackendError):
            normalize_output({"status": "ok"}, Operation.UPSCALE, "direct")


# ============================================
# GENERATION ADAPTER TESTS
# ============================================

class TestGenerationAdapter:
    """Dispatch and fallback"""

    @pytest.mark.asyncio
    async def test_direct_operation(self, backend):
        """Non-composition operations use their backend once, method direct"""
        from intent_engine.generation_adapter import GenerationAdapter, METHOD_DIRECT

        adapter = GenerationAdapter(default_backend=backend, composition_multimodal=FakeBackend(), composition_text=FakeBackend())
        outcome = await adapter.generate(Operation.UPSCALE, {"upscaleFactor": 2}, {"image": "mem://a.png"})

        assert outcome.ok
        assert outcome.value.method == METHOD_DIRECT
        assert backend.calls == [(Operation.UPSCALE, {"upscaleFactor": 2}, {"image": "mem://a.png"})]

    @pytest.mark.asyncio
    async def test_operation_specific_backend(self):
        """A backend registered for an operation takes precedence"""
        from intent_engine.generation_adapter import GenerationAdapter

        default, special = FakeBackend(), FakeBackend()
        adapter = GenerationAdapter(
            default_backend=default,
            composition_multimodal=FakeBackend(),
            composition_text=FakeBackend(),
            backends={Operation.REFRAME: special},
        )
        await adapter.generate(Operation.REFRAME, {}, {"image": "mem://a.png"})

        assert len(special.calls) == 1
        assert default.calls == []

    @pytest.mark.asyncio
    async def test_multimodal_failure_falls_back_once(self, failing_backend_error):
        """Multimodal failure → exactly one text-only call, method text_only"""
        from intent_engine.generation_adapter import GenerationAdapter, METHOD_TEXT_ONLY

        multimodal = FakeBackend(outcomes=[failing_backend_error])
        text = FakeBackend()
        adapter = GenerationAdapter(default_backend=FakeBackend(), composition_multimodal=multimodal, composition_text=text)

        outcome = await adapter.generate(
            Operation.COMPOSE, {"prompt": "floral mug"}, {"product_image": "mem://p.png"}
        )

        assert outcome.ok
        assert outcome.value.method == METHOD_TEXT_ONLY
        assert len(multimodal.calls) == 1
        assert len(text.calls) == 1
        # Text-only composition gets no media
        assert text.calls[0][2] == {}

    @pytest.mark.asyncio
    async def test_multimodal_success_skips_fallback(self):
        """A working multimodal backend never touches text-only"""
        from intent_engine.generation_adapter import GenerationAdapter, METHOD_MULTIMODAL

        multimodal, text = FakeBackend(), FakeBackend()
        adapter = GenerationAdapter(default_backend=FakeBackend(), composition_multimodal=multimodal, composition_text=text)
        outcome = await adapter.generate(Operation.COMPOSE, {"prompt": "x"}, {"design_image": "mem://d.png"})

        assert outcome.value.method == METHOD_MULTIMODAL
        assert text.calls == []

    @pytest.mark.asyncio
    async def test_both_fail_surfaces_fallback_error(self):
        """Double failure returns Err with the text-only error"""
        from intent_engine.generation_adapter import GenerationAdapter

        adapter = GenerationAdapter(
            default_backend=FakeBackend(),
            composition_multimodal=FakeBackend(outcomes=[BackendError("multimodal down")]),
            composition_text=FakeBackend(outcomes=[BackendError("text down")]),
        )
        outcome = await adapter.generate(Operation.COMPOSE, {"prompt": "x"}, {"product_image": "mem://p.png"})

        assert not outcome.ok
        assert "text down" in str(outcome.error)

    @pytest.mark.asyncio
    async def test_prompt_only_goes_text_only(self):
        """No media refs → straight to the text-only backend"""
        from intent_engine.generation_adapter import GenerationAdapter

        multimodal, text = FakeBackend(), FakeBackend()
        adapter = GenerationAdapter(default_backend=FakeBackend(), composition_multimodal=multimodal, composition_text=text)
        await adapter.generate(Operation.COMPOSE, {"prompt": "a blue vase"}, {})

        assert multimodal.calls == []
        assert len(text.calls) == 1


# ============================================
# HTTP GENERATION BACKEND TESTS
# ============================================

class TestHttpGenerationBackend:
    """HTTP error mapping"""

    @pytest.mark.asyncio
    async def test_posts_parameters_and_media(self):
        """Body merges parameters and media fields"""
        from intent_engine.generation_adapter import HttpGenerationBackend

        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"imageUrl": "https://cdn.example.com/r.png"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            backend = HttpGenerationBackend(base_url="http://backend.test", client=client)
            payload = await backend.invoke(Operation.UPSCALE, {"upscaleFactor": 2}, {"image": "mem://a.png"})

        assert seen["url"] == "http://backend.test/api/upscale"
        assert b'"upscaleFactor"' in seen["body"] and b'"image"' in seen["body"]
        assert payload["imageUrl"] == "https://cdn.example.com/r.png"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        """HTTP 5xx → BackendError carrying the status"""
        from intent_engine.generation_adapter import HttpGenerationBackend

        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
        async with httpx.AsyncClient(transport=transport) as client:
            backend = HttpGenerationBackend(base_url="http://backend.test", client=client)
            with pytest.raises(BackendError) as exc_info:
                await backend.invoke(Operation.REFRAME, {}, {})

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_error_flag_in_body(self):
        """A 200 with an error flag is still a failure"""
        from intent_engine.generation_adapter import HttpGenerationBackend

        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False, "error": "quota"}))
        async with httpx.AsyncClient(transport=transport) as client:
            backend = HttpGenerationBackend(base_url="http://backend.test", client=client)
            with pytest.raises(BackendError, match="quota"):
                await backend.invoke(Operation.LIGHTING, {}, {})
