"""
LLM chat for analysis handlers using Google Generative AI (Gemini).
Uses LLM_API_KEY from environment (Gemini API key from Google AI Studio).
"""
import asyncio
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

LLM_API_KEY = os.environ.get("LLM_API_KEY")
DEFAULT_MODEL = os.environ.get("LLM_MODEL", "gemini-2.0-flash")


def _get_api_key() -> Optional[str]:
    return LLM_API_KEY


def _model_name(model: Optional[str]) -> str:
    return model if model and "gemini" in model else DEFAULT_MODEL


def _sync_chat_with_file(
    system_prompt: str,
    user_text: str,
    file_path: str,
    mime_type: str,
    model: Optional[str] = None,
) -> str:
    """Synchronous chat with a media attachment (vehicle photo or engine recording)."""
    import google.generativeai as genai
    api_key = _get_api_key()
    if not api_key:
        raise ValueError("LLM_API_KEY not found in environment")
    genai.configure(api_key=api_key)
    uploaded = genai.upload_file(path=file_path, mime_type=mime_type)
    gemini = genai.GenerativeModel(
        _model_name(model),
        system_instruction=system_prompt,
    )
    response = gemini.generate_content([uploaded, user_text])
    if not response or not response.text:
        raise ValueError("Empty response from LLM")
    return response.text


async def chat_with_file(
    system_prompt: str,
    user_text: str,
    file_path: str,
    mime_type: str,
    model: Optional[str] = None,
) -> str:
    """Async chat with file attachment. Runs sync SDK in thread pool."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(
        None,
        lambda: _sync_chat_with_file(system_prompt, user_text, file_path, mime_type, model),
    )
