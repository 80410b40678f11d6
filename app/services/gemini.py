"""
Gemini reasoning gateway: greeting, triage turn, provider search, speech synthesis.
Every call degrades to a safe value (fallback text, empty list, no audio) instead of
failing the session. Transport errors on greeting / triage / speech surface as
GatewayError so the session layer can pick the fallback; provider search never raises.
"""
import base64
import json
import logging
from typing import Any, Callable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from app.config import settings
from app.core.errors import GatewayError
from app.core.prompts import (
    GREETING_PROMPT,
    LANGUAGE_INSTRUCTION,
    PROVIDER_EXTRACTION_PROMPT,
    PROVIDER_LIST_SCHEMA,
    PROVIDER_SEARCH_PROMPT,
    TRIAGE_RESPONSE_SCHEMA,
    TRIAGE_SYSTEM_PROMPT,
    insurance_clause,
)
from app.schemas.provider import Provider
from app.schemas.triage import Message, TriageTurn

logger = logging.getLogger(__name__)

GREETING_EMPTY_FALLBACK = "Hello, how can I help you today?"
CLARIFICATION_FALLBACK = (
    "I'm sorry, I'm having trouble processing that. "
    "Can you tell me more about your symptoms?"
)


def _content_text(response: Any) -> str:
    """Text of a chat model response; content may be a string or a list of parts."""
    content = getattr(response, "content", response)
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type", "text") == "text":
            parts.append(part.get("text") or "")
    return "".join(parts).strip()


def _history_to_messages(history: Sequence[Message], language: str) -> List[BaseMessage]:
    """System instruction + conversation in its original order."""
    system = f"{TRIAGE_SYSTEM_PROMPT}\n\n{LANGUAGE_INSTRUCTION.format(language=language)}"
    out: List[BaseMessage] = [SystemMessage(content=system)]
    for m in history:
        if m.role == "user":
            out.append(HumanMessage(content=m.text))
        else:
            out.append(AIMessage(content=m.text))
    return out


def parse_triage_turn(raw: str) -> TriageTurn:
    """JSON text → TriageTurn. Malformed or off-schema output becomes a clarification turn."""
    try:
        return TriageTurn.model_validate(json.loads(raw))
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning("Failed to parse triage response: %s", e)
        return TriageTurn(is_triage_complete=False, next_question=CLARIFICATION_FALLBACK)


def parse_providers(raw: str, specialty: str, verified_default: bool = True) -> List[Provider]:
    """
    JSON array text → providers. Missing verified → verified_default, missing
    acceptedInsurance → [], missing specialty → the searched one. Records that still
    fail validation are skipped.
    """
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array of providers, got {type(data).__name__}")
    providers: List[Provider] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        record = dict(item)
        if record.get("verified") is None:
            record["verified"] = verified_default
        if not record.get("acceptedInsurance"):
            record["acceptedInsurance"] = []
        if not record.get("specialty"):
            record["specialty"] = specialty
        try:
            providers.append(Provider.model_validate(record))
        except ValidationError as e:
            logger.debug("Skipping provider record %r: %s", record.get("name"), e)
    return providers


class GeminiGateway:
    """Request/response contracts with Gemini. One instance can serve many sessions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        tts_model: Optional[str] = None,
        search_count: Optional[int] = None,
        verified_default: Optional[bool] = None,
        chat_factory: Optional[Callable[..., Any]] = None,
        speech_client: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_api_key
        self.model = model or settings.gemini_model
        self.tts_model = tts_model or settings.tts_model
        self.search_count = search_count or settings.provider_search_count
        self.verified_default = settings.provider_verified_default if verified_default is None else verified_default
        self._chat_factory = chat_factory
        self._speech_client = speech_client

    def _chat(self, **kwargs) -> Any:
        if self._chat_factory is not None:
            return self._chat_factory(**kwargs)
        if not self.api_key:
            raise GatewayError("GOOGLE_API_KEY is not configured")
        return ChatGoogleGenerativeAI(model=self.model, google_api_key=self.api_key, **kwargs)

    def _json_chat(self, schema: dict) -> Any:
        return self._chat(response_mime_type="application/json", response_schema=schema)

    async def request_greeting(self, language: str) -> str:
        try:
            llm = self._chat()
            r = await llm.ainvoke([HumanMessage(content=GREETING_PROMPT.format(language=language))])
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"greeting request failed: {e}") from e
        return _content_text(r) or GREETING_EMPTY_FALLBACK

    async def advance_triage(self, history: Sequence[Message], language: str) -> TriageTurn:
        """Send the full history; parse the model's JSON decision for the next step."""
        try:
            llm = self._json_chat(TRIAGE_RESPONSE_SCHEMA)
            r = await llm.ainvoke(_history_to_messages(history, language))
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"triage request failed: {e}") from e
        return parse_triage_turn(_content_text(r))

    async def search_providers(
        self,
        specialty: str,
        zip_code: str,
        insurance: Optional[str] = None,
        language: str = "English",
    ) -> List[Provider]:
        """Grounded search for providers, then strict extraction into records. [] on any failure."""
        prompt = PROVIDER_SEARCH_PROMPT.format(
            count=self.search_count,
            specialty=specialty,
            zip_code=zip_code,
            insurance_clause=insurance_clause(insurance),
            language=language,
        )
        try:
            search_llm = self._chat().bind_tools([{"google_search": {}}])
            found = await search_llm.ainvoke([HumanMessage(content=prompt)])
            text = _content_text(found)
            if not text:
                logger.warning("Provider search returned no text for %s near %s", specialty, zip_code)
                return []
            extractor = self._json_chat(PROVIDER_LIST_SCHEMA)
            extracted = await extractor.ainvoke(
                [HumanMessage(content=PROVIDER_EXTRACTION_PROMPT.format(text=text))]
            )
            return parse_providers(_content_text(extracted), specialty, self.verified_default)
        except Exception as e:
            logger.warning("Failed to extract providers: %s", e)
            return []

    def _speech(self) -> Any:
        if self._speech_client is not None:
            return self._speech_client
        if not self.api_key:
            raise GatewayError("GOOGLE_API_KEY is not configured")
        from google import genai
        self._speech_client = genai.Client(api_key=self.api_key)
        return self._speech_client

    async def synthesize_speech(self, text: str, voice: Optional[str] = None) -> Optional[str]:
        """
        Audio-modality request for one prebuilt voice. Returns base64 16-bit PCM
        (24 kHz mono) or None when the model sends no audio part.
        """
        from google.genai import types

        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice or settings.speech_voice),
                ),
            ),
        )
        try:
            response = await self._speech().aio.models.generate_content(
                model=self.tts_model,
                contents=text,
                config=config,
            )
        except GatewayError:
            raise
        except Exception as e:
            raise GatewayError(f"speech synthesis failed: {e}") from e

        for candidate in response.candidates or []:
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                inline = getattr(part, "inline_data", None)
                data = getattr(inline, "data", None)
                if not data:
                    continue
                # The SDK hands back raw bytes; the boundary contract is base64 text.
                if isinstance(data, bytes):
                    return base64.b64encode(data).decode("ascii")
                return data
        return None
