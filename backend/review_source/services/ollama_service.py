"""
Ollama service - chat, streaming review and model listing
"""
import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from loguru import logger

from ..config import settings
from ..core.cancellation import CancelToken
from ..core.errors import ReviewCancelled, StreamBusyError, TransportError
from ..core.prompt_builder import build_detect_system_prompt, build_detect_user_prompt
from ..core.review_logger import ReviewLogger
from ..models.review import ChatReply, ModelConfig


TextCallback = Optional[Callable[[str], None]]
DoneCallback = Optional[Callable[[], None]]


class StreamAccumulator:
    """
    Running thinking/content text of one streaming response

    Both accumulators only ever grow. Callbacks receive the cumulative text.
    After the completion frame further frames are ignored.
    """

    def __init__(
        self,
        on_thinking: TextCallback = None,
        on_content: TextCallback = None,
        on_done: DoneCallback = None
    ):
        self.on_thinking = on_thinking
        self.on_content = on_content
        self.on_done = on_done
        self.thinking = ""
        self.content = ""
        self.done = False
        self.frames = 0

    def feed_line(self, line: str) -> bool:
        """
        Process one newline-delimited frame

        Lines that are not a JSON object (blank, or cut mid-object) are
        dropped silently.

        Returns:
            True once the completion frame has been seen
        """
        if self.done or not line.strip():
            return self.done

        try:
            frame = json.loads(line)
        except json.JSONDecodeError:
            return False

        if not isinstance(frame, dict):
            return False

        return self.feed(frame)

    def feed(self, frame: Dict[str, Any]) -> bool:
        if self.done:
            return True
        self.frames += 1

        message = frame.get("message")
        if isinstance(message, dict):
            thinking = message.get("thinking")
            if isinstance(thinking, str) and thinking:
                self.thinking += thinking
                if self.on_thinking:
                    self.on_thinking(self.thinking)

            content = message.get("content")
            if isinstance(content, str) and content:
                self.content += content
                if self.on_content:
                    self.on_content(self.content)

        if frame.get("done"):
            self.done = True
            if self.on_done:
                self.on_done()

        return self.done


class OllamaService:
    """Client for one Ollama server; at most one active stream at a time"""

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        request_logger: Optional[ReviewLogger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None
    ):
        """
        Args:
            host: server base URL (defaults to settings.ollama_host)
            api_key: sent as a Bearer token when non-empty
            request_logger: sink for request/response records
            transport: httpx transport override
            timeout: request timeout in seconds, None for no timeout
        """
        self.host = (host or settings.ollama_host).rstrip("/")
        self.api_key = settings.ollama_api_key if api_key is None else api_key
        self.request_logger = request_logger or ReviewLogger(
            settings.logs_dir, settings.max_log_files
        )
        self.timeout = settings.request_timeout if timeout is None else timeout
        self._transport = transport
        self._streaming = False

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    async def list_models(self) -> List[str]:
        """Model names available on the server"""
        async with self._client() as client:
            try:
                response = await client.get("/api/tags")
            except httpx.HTTPError as e:
                logger.error(f"❌ Cannot connect to {self.host}: {e}")
                raise TransportError(f"Cannot connect to {self.host}: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"Failed to fetch models: {response.reason_phrase}",
                response.status_code
            )

        data = _json_body(response)
        models = [m.get("name") for m in data.get("models") or [] if m.get("name")]
        logger.info(f"✅ {len(models)} models were found on {self.host}")
        return models

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        config: ModelConfig,
        cancel_token: Optional[CancelToken] = None
    ) -> str:
        """Non-streaming chat (short classification calls), JSON output"""
        reply = await self.chat_completion(
            system_prompt, user_prompt, config,
            cancel_token=cancel_token, json_format=True
        )
        return reply.content

    async def chat_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        config: ModelConfig,
        cancel_token: Optional[CancelToken] = None,
        json_format: bool = False
    ) -> ChatReply:
        """
        Non-streaming chat with usage figures

        Returns:
            content, output token count (estimated from the content length
            when the server does not report it) and elapsed time
        """
        token = cancel_token or CancelToken()
        payload = self.build_payload(system_prompt, user_prompt, config, stream=False)
        if json_format:
            payload["format"] = "json"

        start_time = time.time()
        logger.info(f"🤖 Calling {config.model} ({config.mode_name})")
        logger.debug(f"   - Prompt length: {len(user_prompt)} chars")

        with token.bind():
            token.raise_if_cancelled()
            async with self._client() as client:
                try:
                    response = await client.post("/api/chat", json=payload)
                except httpx.HTTPError as e:
                    logger.error(f"❌ Ollama request failed: {e}")
                    raise TransportError(f"Cannot connect to {self.host}: {e}") from e

        elapsed_ms = (time.time() - start_time) * 1000

        if not response.is_success:
            logger.error(f"❌ Ollama API error: {response.status_code}")
            raise TransportError(
                f"Ollama API error: {response.reason_phrase}",
                response.status_code
            )

        data = _json_body(response)
        content = (data.get("message") or {}).get("content") or ""
        output_tokens = data.get("eval_count") or len(content) / 4

        logger.info(f"✅ Response received ({elapsed_ms / 1000:.2f}s, {output_tokens} tokens)")
        return ChatReply(
            content=content,
            output_tokens=output_tokens,
            response_time_ms=elapsed_ms
        )

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        config: ModelConfig,
        cancel_token: Optional[CancelToken] = None,
        on_thinking: TextCallback = None,
        on_content: TextCallback = None,
        on_done: DoneCallback = None
    ) -> str:
        """
        Streaming chat

        Args:
            system_prompt: system message
            user_prompt: user message
            config: model and think mode
            cancel_token: aborts the request at the next I/O boundary
            on_thinking: called with the cumulative thinking text
            on_content: called with the cumulative content text
            on_done: called once when the server signals completion

        Returns:
            full content text

        Raises:
            StreamBusyError: another stream is active on this client
            ReviewCancelled: the token was cancelled
            TransportError: network or HTTP failure
        """
        if self._streaming:
            raise StreamBusyError("A stream is already active on this client")

        token = cancel_token or CancelToken()
        payload = self.build_payload(system_prompt, user_prompt, config, stream=True)
        accumulator = StreamAccumulator(on_thinking, on_content, on_done)
        started = False

        start_time = time.time()
        logger.info(f"🤖 Streaming from {config.model} ({config.mode_name})")
        logger.debug(f"   - Prompt length: {len(user_prompt)} chars")

        self._streaming = True
        try:
            with token.bind():
                token.raise_if_cancelled()
                async with self._client() as client:
                    async with client.stream("POST", "/api/chat", json=payload) as response:
                        if not response.is_success:
                            logger.error(f"❌ Ollama API error: {response.status_code}")
                            raise TransportError(
                                f"Ollama API error: {response.reason_phrase}",
                                response.status_code
                            )

                        started = True
                        async for line in response.aiter_lines():
                            token.raise_if_cancelled()
                            if accumulator.feed_line(line):
                                break

            elapsed = time.time() - start_time
            logger.info(
                f"✅ Stream finished ({elapsed:.2f}s, {accumulator.frames} frames, "
                f"{len(accumulator.content)} chars)"
            )
            self._log_exchange(payload, accumulator)
            return accumulator.content

        except ReviewCancelled:
            logger.info("⏹️ Stream cancelled")
            if started:
                self._log_exchange(payload, accumulator)
            raise

        except httpx.HTTPError as e:
            logger.error(f"❌ Stream failed after {accumulator.frames} frames: {e}")
            if accumulator.frames:
                self._log_exchange(payload, accumulator)
            raise TransportError(f"Ollama stream failed: {e}") from e

        finally:
            self._streaming = False

    async def detect_language(
        self,
        code: str,
        languages: Sequence[str],
        config: ModelConfig,
        cancel_token: Optional[CancelToken] = None,
        max_chars: Optional[int] = None
    ) -> Optional[str]:
        """
        Classify the language of a source file

        Returns:
            one of `languages`, or None when the model gave no usable answer
        """
        system_prompt = build_detect_system_prompt(languages)
        user_prompt = build_detect_user_prompt(
            code, max_chars or settings.detect_max_chars
        )

        content = await self.chat(system_prompt, user_prompt, config, cancel_token)
        language = match_language(content, languages)

        if language:
            logger.info(f"🔎 Detected language: {language}")
        else:
            logger.warning(f"Language not detected: {content[:100]}")
        return language

    def build_payload(
        self,
        system_prompt: str,
        user_prompt: str,
        config: ModelConfig,
        stream: bool
    ) -> Dict[str, Any]:
        payload = {
            "model": config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            "stream": stream
        }

        think = think_param(config)
        if think is not None:
            payload["think"] = think

        return payload

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        return httpx.AsyncClient(
            base_url=self.host,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport
        )

    def _log_exchange(self, payload: Dict[str, Any], accumulator: StreamAccumulator):
        self.request_logger.log({
            "request": payload,
            "response": {
                "thinking": accumulator.thinking,
                "content": accumulator.content
            }
        })


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise TransportError(f"Invalid response from Ollama: {e}") from e
    if not isinstance(data, dict):
        raise TransportError("Invalid response from Ollama: expected a JSON object")
    return data


def think_param(config: ModelConfig):
    """
    Think parameter for the request

    gpt-oss models take a level, other models a boolean; a mismatched
    setting is left out.
    """
    is_gpt_oss = "gpt-oss" in config.model.lower()
    if is_gpt_oss and isinstance(config.think, str):
        return config.think
    if not is_gpt_oss and isinstance(config.think, bool):
        return config.think
    return None


def match_language(content: str, languages: Sequence[str]) -> Optional[str]:
    """Map the classification answer onto a known language key"""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return None

    if not isinstance(data, dict):
        return None

    language = data.get("language")
    if not isinstance(language, str) or not language.strip():
        return None

    language = language.strip()
    if language in languages:
        return language

    lowered = {known.lower(): known for known in languages}
    return lowered.get(language.lower())
