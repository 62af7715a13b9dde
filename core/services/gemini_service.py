import asyncio
import logging
import aiohttp
from dataclasses import dataclass, field
from typing import Any, List, Dict, Optional

from config import settings
from core.conversation.errors import ExtractionFailure
from core.services.extraction_prompts import build_extraction_prompt, build_summary_prompt

logger = logging.getLogger(__name__)


# Statuses worth retrying; other 4xx responses fail immediately
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class GeminiReply:
    """Raw model text plus token usage for one call"""
    text: str
    usage: Dict[str, int] = field(default_factory=dict)


class GeminiService:
    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 base_url: Optional[str] = None):
        # Direct REST API configuration
        self.api_key = api_key or settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.base_url = base_url or settings.GEMINI_BASE_URL

        self._request_timeout = settings.GEMINI_REQUEST_TIMEOUT_SECONDS
        self._max_retries = settings.GEMINI_MAX_RETRIES

    def _url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent?key={self.api_key}"

    @staticmethod
    def _to_contents(prior_turns: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        """Map {role, content} turns onto Gemini's user/model roles"""
        contents = []
        for turn in prior_turns:
            role = "model" if turn.get("role") == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": turn.get("content", "")}]})
        return contents

    @staticmethod
    def _parse_usage(data: Dict[str, Any]) -> Dict[str, int]:
        metadata = data.get("usageMetadata") or {}
        return {
            "prompt_tokens": int(metadata.get("promptTokenCount") or 0),
            "completion_tokens": int(metadata.get("candidatesTokenCount") or 0),
            "total_tokens": int(metadata.get("totalTokenCount") or 0),
        }

    async def generate(self,
                       contents: List[Dict[str, Any]],
                       system_instruction: Optional[str] = None,
                       json_mode: bool = False,
                       max_tokens: Optional[int] = None) -> GeminiReply:
        """
        Call generateContent with retries.

        Args:
            contents: Gemini contents array (user/model turns)
            system_instruction: Optional system prompt
            json_mode: Ask for application/json output
            max_tokens: Output token cap

        Returns:
            GeminiReply with the first candidate's text and usage

        Raises:
            ExtractionFailure: when no attempt produced a usable response
        """
        if not self.api_key:
            raise ExtractionFailure("GEMINI_API_KEY is not configured")

        generation_config = {
            "maxOutputTokens": max_tokens or settings.GEMINI_MAX_OUTPUT_TOKENS,
            "temperature": settings.GEMINI_TEMPERATURE,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        last_error = "no attempt made"
        for attempt in range(self._max_retries + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        self._url(),
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self._request_timeout),
                        headers={"Content-Type": "application/json"}
                    ) as response:

                        if response.status == 200:
                            data = await response.json()
                            candidates = data.get("candidates") or []
                            parts = (candidates[0].get("content") or {}).get("parts") if candidates else None
                            if parts and parts[0].get("text"):
                                return GeminiReply(text=parts[0]["text"], usage=self._parse_usage(data))

                            # Blocked or empty candidates are not worth retrying
                            reason = candidates[0].get("finishReason") if candidates else data.get("promptFeedback")
                            raise ExtractionFailure(f"Gemini returned no content: {reason}", data)

                        error_text = await response.text()
                        last_error = f"Gemini API error {response.status}: {error_text[:200]}"
                        logger.warning(f"{last_error} (attempt {attempt + 1}/{self._max_retries + 1})")
                        if response.status not in RETRYABLE_STATUSES:
                            raise ExtractionFailure(last_error)

            except asyncio.TimeoutError:
                last_error = f"Gemini API timeout after {self._request_timeout}s"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self._max_retries + 1})")

            except aiohttp.ClientError as e:
                last_error = f"Gemini API connection error: {e}"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self._max_retries + 1})")

            if attempt < self._max_retries:
                # Wait before retry
                await asyncio.sleep(1)

        logger.error(f"❌ Gemini request failed after {self._max_retries + 1} attempts: {last_error}")
        raise ExtractionFailure(last_error)

    async def extract_contacts(self,
                               message: str,
                               context_summary: str,
                               prior_turns: List[Dict[str, str]],
                               timezone: Optional[str] = None) -> GeminiReply:
        """Extract CRM records from one user message"""
        contents = self._to_contents(prior_turns)
        contents.append({
            "role": "user",
            "parts": [{"text": f"Extract contact information from this query: {message}"}]
        })

        reply = await self.generate(
            contents,
            system_instruction=build_extraction_prompt(context_summary, timezone=timezone),
            json_mode=True,
        )
        logger.info(
            f"🤖 Extraction reply: {len(reply.text)} chars, "
            f"{reply.usage.get('total_tokens', 0)} tokens"
        )
        return reply

    async def summarize(self, prior_turns: List[Dict[str, str]]) -> str:
        """Compress older turns into a short plain-text summary"""
        reply = await self.generate(
            [{"role": "user", "parts": [{"text": build_summary_prompt(prior_turns)}]}],
            max_tokens=512,
        )
        return reply.text.strip()


# Global instance
gemini_service = GeminiService()
