"""Vehicle analysis handlers backed by Gemini.

Each handler sends the uploaded photo (or engine recording) with a
type-specific prompt and expects a single JSON object back.
"""

import asyncio
import json
import logging
import mimetypes
import os
from typing import Any, Dict, Optional

from reportcredits.errors import HandlerFailure
from reportcredits.handlers.base import AnalysisHandler
from reportcredits.models.jobs import AnalysisJobType
from utils.llm_chat import chat_with_file

logger = logging.getLogger(__name__)

ANALYSIS_TIMEOUT_SECONDS = float(os.environ.get("ANALYSIS_TIMEOUT_SECONDS", "120"))

JSON_ONLY = "Respond with a single JSON object and nothing else."

PAINT_ANALYSIS_PROMPT = f"""You are an automotive paint inspector.
Assess paint thickness consistency, colour match between panels, scratches and
signs of repainting from the photo.
Return keys: paint_quality, color_analysis, surface_analysis, repainted_panels,
recommendations, confidence (0-1). {JSON_ONLY}"""

DAMAGE_ANALYSIS_PROMPT = f"""You are an automotive damage assessor.
Identify collision damage, dents, scratches, rust, corrosion and broken parts
visible in the photo and estimate repair severity.
Return keys: vehicle_summary, damage_areas (list of objects with area, type,
severity, estimated_repair_cost), overall_assessment, confidence (0-1). {JSON_ONLY}"""

ENGINE_SOUND_PROMPT = f"""You are an engine diagnostics specialist.
Listen to the engine recording and assess its health, idle and revving
behaviour and any abnormal noises.
Return keys: overall_score (0-100), engine_health, rpm_analysis, sound_quality,
detected_issues, recommendations, confidence (0-1). {JSON_ONLY}"""

COMPREHENSIVE_PROMPT = f"""You are a senior vehicle expert producing a full
inspection report covering paint, body damage and general condition.
Return keys: overall_score (0-100), vehicle_condition, paint, damage,
summary, recommendations, confidence (0-1). {JSON_ONLY}"""


def parse_json_response(response_text: str) -> Dict[str, Any]:
    """Parse a model answer, tolerating markdown code fences."""
    text = (response_text or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise HandlerFailure(f"AI response is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise HandlerFailure("AI response is not a JSON object")
    return parsed


def _describe_vehicle(vehicle_info: Optional[Dict[str, Any]]) -> str:
    details = {k: v for k, v in (vehicle_info or {}).items() if v not in (None, "")}
    if not details:
        return "No vehicle details provided."
    return "Vehicle details: " + ", ".join(f"{k}={v}" for k, v in details.items())


class GeminiAnalysisHandler(AnalysisHandler):
    """Shared flow: pick the media file, ask the model, parse JSON."""

    system_prompt: str
    media_input: str = "image_path"
    default_mime_type: str = "image/jpeg"

    def __init__(self, model: Optional[str] = None, timeout_seconds: float = ANALYSIS_TIMEOUT_SECONDS):
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def handle(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        file_path = inputs.get(self.media_input)
        if not file_path:
            kind = "audio" if self.media_input == "audio_path" else "image"
            raise HandlerFailure(f"An {kind} file is required for this analysis")
        if not os.path.exists(file_path):
            raise HandlerFailure(f"Analysis file not found: {file_path}")

        mime_type = mimetypes.guess_type(file_path)[0] or self.default_mime_type
        user_text = _describe_vehicle(inputs.get("vehicle_info"))
        if inputs.get("notes"):
            user_text += f"\nCustomer notes: {inputs['notes']}"

        try:
            response = await asyncio.wait_for(
                chat_with_file(self.system_prompt, user_text, file_path, mime_type, self.model),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise HandlerFailure(f"AI analysis timed out after {self.timeout_seconds:.0f}s") from e

        return parse_json_response(response)


class PaintAnalysisHandler(GeminiAnalysisHandler):
    job_type = AnalysisJobType.PAINT_ANALYSIS
    required_fields = ("paint_quality", "color_analysis", "surface_analysis")
    system_prompt = PAINT_ANALYSIS_PROMPT


class DamageAnalysisHandler(GeminiAnalysisHandler):
    job_type = AnalysisJobType.DAMAGE_ANALYSIS
    required_fields = ("vehicle_summary", "damage_areas")
    system_prompt = DAMAGE_ANALYSIS_PROMPT


class EngineSoundAnalysisHandler(GeminiAnalysisHandler):
    job_type = AnalysisJobType.ENGINE_SOUND_ANALYSIS
    required_fields = ("overall_score", "engine_health", "rpm_analysis", "sound_quality")
    system_prompt = ENGINE_SOUND_PROMPT
    media_input = "audio_path"
    default_mime_type = "audio/mpeg"


class ComprehensiveExpertiseHandler(GeminiAnalysisHandler):
    job_type = AnalysisJobType.COMPREHENSIVE_EXPERTISE
    required_fields = ("overall_score", "vehicle_condition", "summary")
    system_prompt = COMPREHENSIVE_PROMPT


def default_handlers(model: Optional[str] = None):
    return [
        PaintAnalysisHandler(model),
        DamageAnalysisHandler(model),
        EngineSoundAnalysisHandler(model),
        ComprehensiveExpertiseHandler(model),
    ]
