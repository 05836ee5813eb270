"""
LLM Call Interface for codeloop

Provides a unified tool-calling interface over two LLM backends:
- OpenAI-compatible servers (vLLM, SGLang, llama.cpp, Ollama's /v1)
- Ollama's native /api/chat

Transient failures are retried with fixed escalating delays; once the
retries are exhausted a terminal AgentError is raised.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests
from openai import OpenAI

from .errors import LLM_REQUEST_FAILED, AgentError
from .models import LLMBackend, LLMConfig

logger = logging.getLogger(__name__)

RETRY_DELAYS = (1.0, 2.0, 4.0)

# Client errors that will not succeed on retry
_NON_RETRYABLE_STATUS = frozenset({400, 401, 403, 404, 422})


@dataclass
class ToolCall:
    name: str
    arguments: dict[str, Any]
    id: Optional[str] = None


@dataclass
class LLMResponse:
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[dict[str, int]] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


def encode_tool_name(name: str) -> str:
    """OpenAI restricts function names to [a-zA-Z0-9_-]."""
    return name.replace(":", "__")


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning(f"Could not parse tool arguments: {str(raw)[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _status_code(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class LLMClient:
    """Tool-calling LLM client with retry and per-attempt timeout."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        openai_client: Optional[OpenAI] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
    ):
        self.config = config or LLMConfig()
        self._openai = openai_client
        self._session = session or requests.Session()
        self._sleep = sleep
        self._retry_delays = retry_delays

    @property
    def openai_client(self) -> OpenAI:
        if self._openai is None:
            self._openai = OpenAI(
                base_url=self.config.base_url,
                api_key=self.config.api_key or "dummy",  # local servers don't require auth
                max_retries=0,
            )
        return self._openai

    def complete_with_tools(
        self,
        messages: list[dict],
        tool_defs: list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> LLMResponse:
        """
        Ask the model for an answer or tool calls.

        Args:
            messages: Chat messages (role/content dicts)
            tool_defs: OpenAI function-format tool definitions; empty to
                force a plain answer
            options: Optional overrides: stream, temperature, max_tokens

        Returns:
            LLMResponse with text and any requested tool calls

        Raises:
            AgentError: LLM_REQUEST_FAILED once retries are exhausted
        """
        options = options or {}
        attempts = max(0, self.config.retries) + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                if self.config.backend == LLMBackend.OLLAMA:
                    return self._call_ollama(messages, tool_defs, options)
                return self._call_openai(messages, tool_defs, options)
            except AgentError:
                raise
            except Exception as e:
                last_error = e
                status = _status_code(e)
                if status in _NON_RETRYABLE_STATUS:
                    logger.error(f"LLM request rejected with status {status}: {e}")
                    break
                if attempt < attempts:
                    delay = self._retry_delays[min(attempt - 1, len(self._retry_delays) - 1)]
                    logger.warning(
                        f"LLM request failed (attempt {attempt}/{attempts}): {e}; "
                        f"retrying in {delay:.0f}s"
                    )
                    self._sleep(delay)
                else:
                    logger.error(f"LLM request failed (attempt {attempt}/{attempts}): {e}")

        raise AgentError(
            f"LLM request failed after {attempt} attempts: {last_error}",
            LLM_REQUEST_FAILED,
            {
                "backend": self.config.backend.value,
                "model": self.config.model,
                "attempts": attempt,
            },
            retryable=False,
        )

    # ------------------------------------------------------------------
    # OpenAI-compatible backend
    # ------------------------------------------------------------------

    def _call_openai(self, messages: list[dict], tool_defs: list[dict], options: dict) -> LLMResponse:
        name_map = {encode_tool_name(t["function"]["name"]): t["function"]["name"] for t in tool_defs}
        create_kwargs: dict = {
            "model": self.config.model,
            "messages": messages,
            "temperature": options.get("temperature", self.config.temperature),
            "timeout": self.config.timeout,
        }
        max_tokens = options.get("max_tokens", self.config.max_tokens)
        if max_tokens:
            create_kwargs["max_tokens"] = max_tokens
        if tool_defs:
            create_kwargs["tools"] = [self._encode_tool_def(t) for t in tool_defs]

        if options.get("stream", self.config.stream):
            stream = self.openai_client.chat.completions.create(stream=True, **create_kwargs)
            return self._collect_openai_stream(stream, name_map)

        response = self.openai_client.chat.completions.create(**create_kwargs)
        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                name=name_map.get(tc.function.name, tc.function.name),
                arguments=_parse_arguments(tc.function.arguments),
                id=tc.id,
            )
            for tc in (message.tool_calls or [])
        ]
        usage = None
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(text=message.content or "", tool_calls=tool_calls, usage=usage)

    @staticmethod
    def _encode_tool_def(tool_def: dict) -> dict:
        function = dict(tool_def["function"])
        function["name"] = encode_tool_name(function["name"])
        return {**tool_def, "function": function}

    @staticmethod
    def _collect_openai_stream(stream: Any, name_map: dict[str, str]) -> LLMResponse:
        """Accumulate streamed deltas into a single response."""
        text_parts: list[str] = []
        partial: dict[int, dict[str, Any]] = {}

        for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                text_parts.append(delta.content)
            for tc in delta.tool_calls or []:
                slot = partial.setdefault(tc.index, {"id": None, "name": "", "arguments": ""})
                if tc.id:
                    slot["id"] = tc.id
                if tc.function is not None:
                    slot["name"] += tc.function.name or ""
                    slot["arguments"] += tc.function.arguments or ""

        tool_calls = [
            ToolCall(
                name=name_map.get(slot["name"], slot["name"]),
                arguments=_parse_arguments(slot["arguments"]),
                id=slot["id"],
            )
            for _, slot in sorted(partial.items())
        ]
        return LLMResponse(text="".join(text_parts), tool_calls=tool_calls)

    # ------------------------------------------------------------------
    # Ollama backend
    # ------------------------------------------------------------------

    @property
    def ollama_endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        if base.endswith("/v1"):
            base = base[: -len("/v1")]
        return f"{base}/api/chat"

    def _call_ollama(self, messages: list[dict], tool_defs: list[dict], options: dict) -> LLMResponse:
        name_map = {encode_tool_name(t["function"]["name"]): t["function"]["name"] for t in tool_defs}
        stream = bool(options.get("stream", self.config.stream))
        payload: dict = {
            "model": self.config.model,
            "messages": messages,
            "stream": stream,
            "options": {"temperature": options.get("temperature", self.config.temperature)},
        }
        if tool_defs:
            payload["tools"] = [self._encode_tool_def(t) for t in tool_defs]

        response = self._session.post(
            self.ollama_endpoint,
            json=payload,
            timeout=self.config.timeout,
            stream=stream,
        )
        response.raise_for_status()

        if stream:
            chunks = [json.loads(line) for line in response.iter_lines() if line]
        else:
            chunks = [response.json()]

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        usage = None
        for chunk in chunks:
            message = chunk.get("message") or {}
            text_parts.append(message.get("content") or "")
            for tc in message.get("tool_calls") or []:
                function = tc.get("function") or {}
                name = function.get("name", "")
                tool_calls.append(
                    ToolCall(
                        name=name_map.get(name, name),
                        arguments=_parse_arguments(function.get("arguments")),
                    )
                )
            if chunk.get("done") and "prompt_eval_count" in chunk:
                prompt_tokens = chunk.get("prompt_eval_count", 0)
                completion_tokens = chunk.get("eval_count", 0)
                usage = {
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                    "total_tokens": prompt_tokens + completion_tokens,
                }

        return LLMResponse(text="".join(text_parts), tool_calls=tool_calls, usage=usage)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check_connection(self) -> bool:
        """Return True if the backend answers its model listing endpoint."""
        try:
            if self.config.backend == LLMBackend.OLLAMA:
                base = self.ollama_endpoint[: -len("/api/chat")]
                response = self._session.get(f"{base}/api/tags", timeout=5)
                response.raise_for_status()
            else:
                self.openai_client.models.list()
            return True
        except Exception as e:
            logger.warning(f"LLM backend not reachable at {self.config.base_url}: {e}")
            return False

    def close(self) -> None:
        self._session.close()
