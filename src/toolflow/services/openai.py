"""
OpenAI-compatible chat completions service.

Each attempt becomes one request that forces a single function tool whose
parameters are the step's output schema. Forwarded results from earlier
steps and the current step's failed attempts are written into the system
message together with their issues, so the model sees what to fix.
"""

import json
from collections.abc import Sequence
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config.settings import ServiceConfig
from ..core.errors import TransportError
from ..core.outputs import StepInput
from ..core.results import TokenUsage, ToolResult
from ..observability.logging import get_logger
from ..observability.tracing import trace_span
from .base import ToolCallResponse, ToolService

logger = get_logger(__name__)

# Model families that reject temperature and take max_completion_tokens
_COMPLETION_TOKEN_MODELS = ("gpt-5", "o1", "o3")


def uses_completion_tokens(model: str) -> bool:
    lowered = model.lower()
    return any(marker in lowered for marker in _COMPLETION_TOKEN_MODELS)


def build_system_message(
    step,
    previous_results: Sequence[ToolResult] = (),
    current_step_retries: Sequence[ToolResult] = (),
) -> str:
    lines = [
        "You are an AI assistant executing tool calls in a structured workflow.",
        "",
        f"Current step: {step.name}",
    ]
    if step.description:
        lines.append(f"Step description: {step.description}")
    if step.guidance:
        lines.extend(["", step.guidance])

    if previous_results:
        lines.extend(["", "Results from earlier steps:"])
        for result in previous_results:
            lines.append(f"- {result.step_name}: {json.dumps(result.output.to_map(), default=str)}")
            lines.extend(_issue_lines(result))

    if current_step_retries:
        lines.extend(["", "Earlier attempts of this step had these issues. Fix them this time:"])
        for result in current_step_retries:
            lines.append(
                f"- Attempt {result.output.round + 1}: "
                f"{json.dumps(result.output.to_map(), default=str)}"
            )
            lines.extend(_issue_lines(result))

    return "\n".join(lines)


def _issue_lines(result: ToolResult) -> list[str]:
    lines = []
    for issue in result.issues:
        lines.append(f"  * [{issue.severity.value.upper()}] {issue.description}")
        for suggestion in issue.suggestions:
            lines.append(f"    suggestion: {suggestion}")
    return lines


def build_user_message(step_input: StepInput) -> str:
    return "\n".join(
        [
            "Please execute the tool with the following parameters:",
            "",
            json.dumps(step_input.clean_data(), default=str),
            "",
            "Return structured JSON output matching the tool schema.",
        ]
    )


class OpenAIToolService(ToolService):
    """Tool service backed by an OpenAI-compatible /chat/completions endpoint."""

    def __init__(self, config: ServiceConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._http_client = http_client
        # Only a client created here is closed here
        self._owned_client = http_client is None

    async def __aenter__(self):
        self._client()
        return self

    async def close(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_request(
        self,
        step,
        step_input: StepInput,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> dict[str, Any]:
        model = step_input.model or step.model or self.config.default_model
        max_tokens = step_input.max_tokens or self.config.default_max_tokens

        request: dict[str, Any] = {
            "model": model,
            "messages": [
                {
                    "role": "system",
                    "content": build_system_message(step, previous_results, current_step_retries),
                },
                {"role": "user", "content": build_user_message(step_input)},
            ],
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": step.name,
                        "description": step.description or f"Produce the output of step {step.name}",
                        "parameters": step.schema,
                    },
                }
            ],
            # Force the single tool
            "tool_choice": {"type": "function", "function": {"name": step.name}},
        }

        if uses_completion_tokens(model):
            request["max_completion_tokens"] = max_tokens
        else:
            temperature = step_input.temperature
            request["temperature"] = (
                temperature if temperature is not None else self.config.default_temperature
            )
            request["max_tokens"] = max_tokens

        # Remaining step params pass through to the request body
        extra = {k: v for k, v in step.params.items() if k != "temperature"}
        request.update(extra)
        return request

    @trace_span("openai.execute")
    async def execute(
        self,
        step,
        step_input: StepInput,
        *,
        previous_results: Sequence[ToolResult] = (),
        current_step_retries: Sequence[ToolResult] = (),
    ) -> ToolCallResponse:
        request = self.build_request(step, step_input, previous_results, current_step_retries)
        logger.info(
            f"Calling model for step '{step.name}'",
            model=request["model"],
            round=step_input.round,
            forwarded=len(previous_results),
            retries=len(current_step_retries),
        )

        try:
            # Transient network errors only; HTTP status errors are not retried
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
                reraise=True,
            ):
                with attempt:
                    response = await self._client().post(
                        f"{self.config.base_url}/chat/completions",
                        json=request,
                        headers=self._get_headers(),
                    )
        except httpx.HTTPError as e:
            raise TransportError(f"Request to model API failed: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"Model API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Model API returned invalid JSON: {e}") from e

        output = self._extract_tool_call(data, step.name)
        usage = TokenUsage.from_map(data.get("usage"))
        return ToolCallResponse(output=output, usage=usage)

    @staticmethod
    def _extract_tool_call(data: dict[str, Any], expected_name: str) -> dict[str, Any]:
        try:
            message = data["choices"][0]["message"]
            tool_call = message["tool_calls"][0]
            function = tool_call["function"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransportError(f"Malformed tool call response: missing {e}") from e

        name = function.get("name")
        if name != expected_name:
            raise TransportError(f"Expected tool {expected_name} but got {name}")

        arguments = function.get("arguments")
        if arguments is None:
            raise TransportError("No arguments in tool call")
        # Some compatible servers return decoded arguments
        if isinstance(arguments, dict):
            return arguments
        try:
            parsed = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise TransportError(f"Tool call arguments are not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise TransportError("Tool call arguments must be a JSON object")
        return parsed
