"""
OpenAI REST clients for the three pipeline stages.

- Transcriber: WAV bytes -> text (Whisper, multipart upload)
- ChatGenerator: message list -> one short reply (chat completions)
- SpeechSynthesizer: text + voice -> raw PCM 16-bit 24 kHz mono (speech)

All three share one pooled aiohttp session with explicit deadlines. Every
failure surfaces as the stage's typed error carrying the HTTP status (None for
transport errors/timeouts) and the provider's error body.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence, Type

import aiohttp

from logging_setup import get_logger, Component
from .config import AgentConfig, Voice
from .conversation import ConversationMessage
from .errors import (
    GenerationError,
    PipelineError,
    SynthesisError,
    TranscriptionError,
    redact_detail,
)

# Format returned by the speech endpoint for response_format="pcm".
SPEECH_SAMPLE_RATE = 24000

FALLBACK_REPLY = "I apologize, but I couldn't generate a response."


class OpenAIHTTP:
    """
    Shared HTTP session with connection pooling.

    Reuses TCP connections between requests to reduce per-turn latency.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 5.0,
        pool_size: int = 10,
    ):
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds, connect=connect_timeout_seconds)
        self._pool_size = pool_size
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger = get_logger(Component.VOICE_AGENT)

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._pool_size,
                ttl_dns_cache=300,
                force_close=False,
            )
            self._session = aiohttp.ClientSession(connector=connector, timeout=self._timeout)
            self.logger.debug(
                "OpenAI connection pool created",
                pool_size=self._pool_size,
                total_timeout_ms=int((self._timeout.total or 0) * 1000),
            )
        return self._session

    async def post(
        self,
        path: str,
        *,
        error_cls: Type[PipelineError],
        json: Optional[Dict[str, Any]] = None,
        data: Optional[aiohttp.FormData] = None,
        expect: str = "json",
    ) -> Any:
        """
        POST to the API and return the decoded body.

        expect: "json" for a decoded JSON body, "bytes" for the raw payload.
        """
        url = f"{self.base_url}{path}"
        try:
            session = self.get_session()
            async with session.post(url, headers=self.headers, json=json, data=data) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise error_cls(
                        f"OpenAI API error on {path}",
                        status=response.status,
                        body=redact_detail(body),
                    )
                if expect == "bytes":
                    return await response.read()
                return await response.json(content_type=None)
        except PipelineError:
            raise
        except asyncio.TimeoutError as e:
            raise error_cls(f"OpenAI request to {path} timed out") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise error_cls(f"OpenAI request to {path} failed: {type(e).__name__}: {e}") from e

    async def aclose(self) -> None:
        """Close the pooled session. Safe to call multiple times."""
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()


class Transcriber:
    """Speech-to-text: WAV bytes in, plain text out (empty string allowed)."""

    def __init__(self, http: OpenAIHTTP, *, model: str = "whisper-1", language: str = "en"):
        self._http = http
        self.model = model
        self.language = language
        self.logger = get_logger(Component.STT)

    async def transcribe(self, wav: bytes) -> str:
        form = aiohttp.FormData()
        form.add_field("file", wav, filename="audio.wav", content_type="audio/wav")
        form.add_field("model", self.model)
        form.add_field("language", self.language)

        t_start = time.perf_counter()
        data = await self._http.post(
            "/audio/transcriptions",
            error_cls=TranscriptionError,
            data=form,
        )
        text = data.get("text") if isinstance(data, dict) else None
        self.logger.debug(
            "STT call completed",
            wav_bytes=len(wav),
            text_length=len(text or ""),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return text or ""


class ChatGenerator:
    """Text generation: ordered messages in, one short assistant reply out."""

    def __init__(
        self,
        http: OpenAIHTTP,
        *,
        model: str = "gpt-4-turbo-preview",
        temperature: float = 0.7,
        max_tokens: int = 150,
    ):
        self._http = http
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.logger = get_logger(Component.LLM)

    async def generate(self, messages: Sequence[ConversationMessage]) -> str:
        payload = {
            "model": self.model,
            "messages": [m.to_api() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        t_start = time.perf_counter()
        data = await self._http.post("/chat/completions", error_cls=GenerationError, json=payload)
        reply = _first_choice_content(data)
        self.logger.debug(
            "LLM call completed",
            model=self.model,
            context_messages=len(messages),
            reply_length=len(reply or ""),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return reply or FALLBACK_REPLY


def _first_choice_content(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices: List[Any] = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message") or {}
    content = message.get("content")
    return content if isinstance(content, str) else None


class SpeechSynthesizer:
    """Text-to-speech: text + voice in, raw PCM (16-bit LE, 24 kHz mono) out."""

    sample_rate = SPEECH_SAMPLE_RATE

    def __init__(self, http: OpenAIHTTP, *, model: str = "tts-1"):
        self._http = http
        self.model = model
        self.logger = get_logger(Component.TTS)

    async def synthesize(self, text: str, voice: Voice | str) -> bytes:
        voice_id = voice.value if isinstance(voice, Voice) else voice
        payload = {
            "model": self.model,
            "voice": voice_id,
            "input": text,
            "response_format": "pcm",
        }
        t_start = time.perf_counter()
        audio = await self._http.post(
            "/audio/speech",
            error_cls=SynthesisError,
            json=payload,
            expect="bytes",
        )
        if not audio:
            raise SynthesisError("OpenAI speech returned no audio")
        self.logger.debug(
            "TTS call completed",
            voice=voice_id,
            text_length=len(text),
            audio_bytes=len(audio),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return audio


class OpenAIClients:
    """The three stage clients built from one AgentConfig, sharing one session."""

    def __init__(self, config: AgentConfig, api_key: str):
        self.http = OpenAIHTTP(
            api_key=api_key,
            base_url=config.openai_base_url,
            timeout_seconds=config.request_timeout_seconds,
        )
        self.transcriber = Transcriber(self.http, model=config.stt_model, language=config.language)
        self.generator = ChatGenerator(
            self.http,
            model=config.llm_model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        self.synthesizer = SpeechSynthesizer(self.http, model=config.tts_model)

    async def aclose(self) -> None:
        await self.http.aclose()
