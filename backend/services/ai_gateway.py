# backend/services/ai_gateway.py
"""
AI Gateway Client

Single point of contact with the generative model. Three request kinds:
- analyze: structured JSON critique of an uploaded resume
- optimize: full rewrite of the resume as a standalone HTML document
- chat: short career-consultant replies

Documents (PDF or image) are sent to the model as-is; text extraction is the
model's job. Responses are normalized (markdown fences stripped, JSON parsed)
and every failure is mapped onto the errors in `errors.py`.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from config import Settings, get_settings
from errors import EmptyOutput, MalformedResponse, UpstreamError
from models import AnalysisReport, ChatTurn
from prompts.resume_prompts import PromptTemplates

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"```[a-zA-Z]*")

# Below this many characters the optimize output is not a usable resume
MIN_HTML_LENGTH = 50

MAX_LIST_ITEMS = 3

ATS_LEVELS = {"low": "Low", "medium": "Medium", "high": "High"}


def strip_markdown_fences(text: str) -> str:
    """Remove ```json / ```html / ``` wrappers the model sometimes adds."""
    if not text:
        return ""
    if "```" in text:
        text = FENCE_RE.sub("", text)
    return text.strip()


def build_document_part(file_base64: str, mime_type: str) -> Dict[str, Any]:
    """Build the chat-completions content part carrying the uploaded document."""
    data_url = f"data:{mime_type};base64,{file_base64}"

    if mime_type.startswith("image/"):
        return {"type": "image_url", "image_url": {"url": data_url}}

    return {
        "type": "file",
        "file": {"filename": "resume.pdf", "file_data": data_url},
    }


def normalize_analysis(data: Any) -> Dict[str, Any]:
    """
    Coerce raw model JSON into the AnalysisReport shape.

    Lists are cut to three entries and the score is clamped to 0-100. Anything
    that cannot be coerced raises MalformedResponse.
    """
    if not isinstance(data, dict):
        raise MalformedResponse("Analysis response is not a JSON object")

    missing = [key for key in PromptTemplates.ANALYSIS_KEYS if key not in data]
    if missing:
        raise MalformedResponse(f"Analysis response is missing keys: {', '.join(missing)}")

    score = data["score"]
    if isinstance(score, bool):
        raise MalformedResponse("Analysis score is not a number")
    try:
        value = float(score)
    except (TypeError, ValueError):
        raise MalformedResponse(f"Analysis score is not a number: {score!r}")
    if not math.isfinite(value):
        raise MalformedResponse(f"Analysis score is not a finite number: {score!r}")
    score = int(round(value))

    normalized = {
        "score": max(0, min(100, score)),
        "atsCompatibility": ATS_LEVELS.get(str(data["atsCompatibility"]).strip().lower(), data["atsCompatibility"]),
        "summary": str(data.get("summary") or ""),
    }

    for key in ("grammarIssues", "structureGaps", "impactOptimizations"):
        items = data.get(key) or []
        if isinstance(items, str):
            items = [items]
        if not isinstance(items, list):
            raise MalformedResponse(f"Analysis field '{key}' is not a list")
        normalized[key] = [str(item) for item in items][:MAX_LIST_ITEMS]

    return normalized


class AIGateway:
    """
    Client for the external generative model.

    Args:
        settings: runtime settings (models, temperatures, API key)
        client: optional pre-built AsyncOpenAI client (tests inject a mock)
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncOpenAI] = None):
        self.settings = settings or get_settings()

        if client is None:
            if not self.settings.openai_api_key:
                logger.warning("No OpenAI API key found - AI gateway calls will fail")
            client = AsyncOpenAI(api_key=self.settings.openai_api_key or "missing-api-key")

        self.client = client

    async def _complete(self, *, model: str, temperature: float, messages: List[Dict[str, Any]],
                        response_format: Optional[Dict[str, str]] = None) -> str:
        kwargs: Dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "messages": messages,
        }
        if response_format is not None:
            kwargs["response_format"] = response_format

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except Exception as e:
            logger.error(f"AI gateway call failed ({model}): {e}")
            raise UpstreamError(str(e) or "The AI service request failed.") from e

        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise MalformedResponse("The AI service returned an unexpected response.") from e

    async def analyze(self, file_base64: str, mime_type: str, output_language: str) -> AnalysisReport:
        """
        Produce an AnalysisReport for the uploaded document.

        Raises:
            UpstreamError: remote call failed
            MalformedResponse: output is not JSON of the expected shape
        """
        logger.info(f"Analyze request: mime={mime_type}, lang={output_language}, size={len(file_base64)}")

        raw = await self._complete(
            model=self.settings.analyze_model,
            temperature=self.settings.analyze_temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": PromptTemplates.analysis_system(output_language)},
                {
                    "role": "user",
                    "content": [
                        build_document_part(file_base64, mime_type),
                        {"type": "text", "text": PromptTemplates.analysis_request()},
                    ],
                },
            ],
        )
        logger.info("RAW analysis JSON (trunc): %s", raw[:500])

        try:
            data = json.loads(strip_markdown_fences(raw))
        except json.JSONDecodeError as e:
            raise MalformedResponse("The AI service returned an invalid analysis report.") from e

        try:
            return AnalysisReport.model_validate(normalize_analysis(data))
        except PydanticValidationError as e:
            raise MalformedResponse(f"The analysis report has an unexpected shape: {e.errors()[0]['msg']}") from e

    async def optimize(self, file_base64: str, mime_type: str, output_language: str,
                       user_instructions: Optional[str] = None) -> str:
        """
        Rewrite the document as a standalone HTML resume.

        Raises:
            UpstreamError: remote call failed
            EmptyOutput: the model produced nothing usable (not retried)
        """
        logger.info(
            f"Optimize request: mime={mime_type}, lang={output_language}, "
            f"instructions={'yes' if user_instructions else 'no'}"
        )

        raw = await self._complete(
            model=self.settings.optimize_model,
            temperature=self.settings.optimize_temperature,
            messages=[
                {"role": "system", "content": PromptTemplates.optimize_system(output_language)},
                {
                    "role": "user",
                    "content": [
                        build_document_part(file_base64, mime_type),
                        {"type": "text", "text": PromptTemplates.optimize_request(user_instructions)},
                    ],
                },
            ],
        )

        html = strip_markdown_fences(raw)
        if len(html) < MIN_HTML_LENGTH:
            raise EmptyOutput(
                "The AI returned an empty or insufficient response. "
                "Please ensure the uploaded file is a clear resume."
            )

        logger.info(f"Optimize produced {len(html)} characters of HTML")
        return html

    async def chat(self, history: Sequence[ChatTurn], output_language: str) -> str:
        """
        Reply to the last turn of `history`, replaying earlier turns as context.

        The caller is responsible for trimming history to the recent turns.
        """
        if not history:
            raise ValueError("Chat history cannot be empty")

        *previous, latest = history
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": PromptTemplates.chat_system(output_language)}
        ]
        messages.extend({"role": turn.role, "content": turn.text} for turn in previous)
        messages.append({"role": "user", "content": latest.text})

        reply = await self._complete(
            model=self.settings.chat_model,
            temperature=self.settings.chat_temperature,
            messages=messages,
        )
        return reply.strip()


# ============================================================================
# Singleton accessors
# ============================================================================

_ai_gateway_instance: Optional[AIGateway] = None


def get_ai_gateway() -> AIGateway:
    """
    Get or create singleton AIGateway instance.

    Returns:
        AIGateway instance
    """
    global _ai_gateway_instance

    if _ai_gateway_instance is None:
        _ai_gateway_instance = AIGateway()

    return _ai_gateway_instance


def reset_ai_gateway():
    """Reset the singleton instance (useful for testing)."""
    global _ai_gateway_instance
    _ai_gateway_instance = None
    logger.info("AIGateway singleton reset")
