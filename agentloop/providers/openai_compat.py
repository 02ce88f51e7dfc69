"""OpenAI-compatible chat model collaborator."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from .types import Message, ModelResponse, ResponseFormat, ToolCall, ToolDefinition


class OpenAICompatibleModel:
    """Chat model backed by any OpenAI-compatible chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str = "",
        temperature: Optional[float] = 0.7,
        max_tokens: int = 4096,
    ) -> None:
        self.model = model
        self.api_base = api_base or ""
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = AsyncOpenAI(api_key=api_key, base_url=api_base or None)
        self._forced_temperature: Optional[float] = None

    async def chat(
        self,
        messages: List[Message],
        tools: Optional[List[ToolDefinition]] = None,
        tool_choice: Optional[str] = None,
        response_format: Optional[ResponseFormat] = None,
    ) -> ModelResponse:
        kwargs = self._build_chat_kwargs(
            messages=self._to_openai_messages(messages),
            tools=[tool.to_openai() for tool in tools] if tools else None,
            tool_choice=tool_choice,
            response_format=response_format,
        )
        completion = await self._create_with_temperature_retry(kwargs)
        return self._from_openai_completion(completion)

    def _build_chat_kwargs(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        tool_choice: Optional[str],
        response_format: Optional[ResponseFormat],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
        }
        if self.max_tokens and self.max_tokens > 0:
            kwargs["max_tokens"] = self.max_tokens
        temperature = self._forced_temperature if self._forced_temperature is not None else self.temperature
        if temperature is not None:
            kwargs["temperature"] = temperature
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = tool_choice or "auto"
        if response_format is not None:
            json_schema: Dict[str, Any] = {
                "name": response_format.name,
                "schema": response_format.schema,
                "strict": response_format.strict,
            }
            if response_format.description:
                json_schema["description"] = response_format.description
            kwargs["response_format"] = {"type": "json_schema", "json_schema": json_schema}
        return kwargs

    async def _create_with_temperature_retry(self, kwargs: Dict[str, Any]):
        try:
            return await self.client.chat.completions.create(**kwargs)
        except Exception as error:
            allowed = self._extract_allowed_temperature(error)
            current = kwargs.get("temperature")
            if allowed is None or current == allowed:
                raise

            retry_kwargs = dict(kwargs)
            retry_kwargs["temperature"] = allowed
            self._forced_temperature = allowed
            return await self.client.chat.completions.create(**retry_kwargs)

    def _extract_allowed_temperature(self, error: Exception) -> Optional[float]:
        message = str(error).lower()
        if "invalid temperature" not in message:
            return None

        # Example: "invalid temperature: only 0.6 is allowed for this model"
        match = re.search(r"only\s+([0-9]+(?:\.[0-9]+)?)\s+is allowed", message)
        if not match:
            return None
        return float(match.group(1))

    def _to_openai_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        result: List[Dict[str, Any]] = []
        for msg in messages:
            if msg.role == "tool":
                result.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content or ""})
                continue

            message: Dict[str, Any] = {"role": msg.role, "content": msg.content}
            if msg.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments or {}),
                        },
                    }
                    for call in msg.tool_calls
                ]
            elif message["content"] is None:
                message["content"] = ""
            result.append(message)
        return result

    def _from_openai_completion(self, completion) -> ModelResponse:
        if not completion.choices:
            raise RuntimeError("Empty model response: no choices")

        choice = completion.choices[0]
        message = choice.message
        text = self._normalize_message_content(getattr(message, "content", None))
        tool_calls: List[ToolCall] = []

        for call in getattr(message, "tool_calls", None) or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            tool_calls.append(
                ToolCall(
                    name=getattr(function, "name", "") or "",
                    arguments=self._safe_parse_args(getattr(function, "arguments", None)),
                    id=getattr(call, "id", None),
                )
            )

        usage_data = getattr(completion, "usage", None)
        usage = None
        if usage_data:
            usage = {
                "prompt_tokens": int(getattr(usage_data, "prompt_tokens", 0) or 0),
                "completion_tokens": int(getattr(usage_data, "completion_tokens", 0) or 0),
                "total_tokens": int(getattr(usage_data, "total_tokens", 0) or 0),
            }

        return ModelResponse(
            content=text,
            tool_calls=tool_calls,
            finish_reason=getattr(choice, "finish_reason", None),
            usage=usage,
            raw=completion,
        )

    def _normalize_message_content(self, content: Any) -> str:
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            chunks: List[str] = []
            for item in content:
                if isinstance(item, dict):
                    chunks.append(str(item.get("text", "") or ""))
                elif isinstance(item, str):
                    chunks.append(item)
                else:
                    chunks.append(str(getattr(item, "text", "") or ""))
            return "".join(chunks)
        return str(content)

    def _safe_parse_args(self, arguments: Any) -> Dict[str, Any]:
        if not arguments:
            return {}
        if isinstance(arguments, dict):
            return arguments
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
