"""
Analysis handlers and their registry.

- Registry rejects duplicates and reports missing job types.
- Default handlers cover every active priced job type.
- Gemini handlers parse fenced JSON and turn timeouts into HandlerFailure.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import StubHandler
from reportcredits.errors import HandlerFailure, HandlerNotRegistered
from reportcredits.handlers import HandlerRegistry, default_handlers
from reportcredits.handlers.vehicle import (
    DamageAnalysisHandler,
    EngineSoundAnalysisHandler,
    PaintAnalysisHandler,
    parse_json_response,
)
from reportcredits.models.jobs import AnalysisJobType
from reportcredits.models.pricing import DEFAULT_SERVICE_PRICING

pytestmark = pytest.mark.asyncio


class TestRegistry:
    async def test_register_and_get(self):
        handler = StubHandler(AnalysisJobType.PAINT_ANALYSIS)
        registry = HandlerRegistry([handler])

        assert registry.get(AnalysisJobType.PAINT_ANALYSIS) is handler
        assert registry.get("PAINT_ANALYSIS") is handler
        assert AnalysisJobType.PAINT_ANALYSIS in registry
        assert registry.job_types() == [AnalysisJobType.PAINT_ANALYSIS]

    async def test_duplicate_registration_is_an_error(self):
        registry = HandlerRegistry([StubHandler(AnalysisJobType.PAINT_ANALYSIS)])
        with pytest.raises(ValueError):
            registry.register(StubHandler(AnalysisJobType.PAINT_ANALYSIS))

    async def test_missing_handler(self):
        registry = HandlerRegistry()
        with pytest.raises(HandlerNotRegistered):
            registry.get(AnalysisJobType.DAMAGE_ANALYSIS)

    async def test_ensure_covers_lists_missing_types(self):
        registry = HandlerRegistry([StubHandler(AnalysisJobType.PAINT_ANALYSIS)])

        registry.ensure_covers([AnalysisJobType.PAINT_ANALYSIS])
        with pytest.raises(HandlerNotRegistered) as exc:
            registry.ensure_covers([AnalysisJobType.PAINT_ANALYSIS, AnalysisJobType.DAMAGE_ANALYSIS])
        assert "DAMAGE_ANALYSIS" in str(exc.value)

    async def test_default_handlers_cover_active_catalog(self):
        registry = HandlerRegistry(default_handlers())
        registry.ensure_covers(p.job_type for p in DEFAULT_SERVICE_PRICING if p.is_active)
        assert AnalysisJobType.VALUE_ESTIMATION not in registry


class TestValidateResult:
    async def test_required_fields(self):
        handler = StubHandler(AnalysisJobType.DAMAGE_ANALYSIS, required_fields=("vehicle_summary", "damage_areas"))

        assert handler.validate_result({"vehicle_summary": "x", "damage_areas": []}) == {
            "vehicle_summary": "x",
            "damage_areas": [],
        }
        with pytest.raises(HandlerFailure, match="damage_areas"):
            handler.validate_result({"vehicle_summary": "x"})
        with pytest.raises(HandlerFailure, match="No valid result"):
            handler.validate_result(None)


class TestParseJsonResponse:
    async def test_plain_and_fenced_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}
        assert parse_json_response('```\n{"a": 1}\n```') == {"a": 1}

    @pytest.mark.parametrize("text", ["", "not json", "[1, 2]"])
    async def test_rejects_non_objects(self, text):
        with pytest.raises(HandlerFailure):
            parse_json_response(text)


class TestGeminiHandlers:
    async def test_paint_handler_sends_image_and_parses(self, tmp_path):
        image = tmp_path / "car.jpg"
        image.write_bytes(b"\xff\xd8\xff")
        answer = '```json\n{"paint_quality": "original", "color_analysis": {}, "surface_analysis": {}, "confidence": 0.7}\n```'

        with patch("reportcredits.handlers.vehicle.chat_with_file", AsyncMock(return_value=answer)) as chat:
            result = await PaintAnalysisHandler().handle({
                "image_path": str(image),
                "vehicle_info": {"brand": "Renault", "model": "Clio", "year": 2019},
                "notes": "Check bonnet",
            })

        assert result["paint_quality"] == "original"
        system_prompt, user_text, file_path, mime_type, _model = chat.call_args.args
        assert "paint" in system_prompt.lower()
        assert "brand=Renault" in user_text
        assert "Check bonnet" in user_text
        assert file_path == str(image)
        assert mime_type == "image/jpeg"

    async def test_engine_handler_requires_audio(self, tmp_path):
        image = tmp_path / "car.jpg"
        image.write_bytes(b"\xff\xd8\xff")
        with pytest.raises(HandlerFailure, match="audio"):
            await EngineSoundAnalysisHandler().handle({"image_path": str(image)})

    async def test_missing_file(self):
        with pytest.raises(HandlerFailure, match="not found"):
            await DamageAnalysisHandler().handle({"image_path": "/nonexistent/car.jpg"})

    async def test_timeout_becomes_handler_failure(self, tmp_path):
        image = tmp_path / "car.png"
        image.write_bytes(b"\x89PNG")

        async def slow(*args, **kwargs):
            await asyncio.sleep(5)
            return "{}"

        with patch("reportcredits.handlers.vehicle.chat_with_file", side_effect=slow):
            with pytest.raises(HandlerFailure, match="timed out"):
                await DamageAnalysisHandler(timeout_seconds=0.05).handle({"image_path": str(image)})
