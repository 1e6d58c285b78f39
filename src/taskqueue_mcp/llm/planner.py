# src/taskqueue_mcp/llm/planner.py

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
import openai
from openai import OpenAI

from ..config import Settings
from ..core.errors import AppError, ErrorCode
from ..core.ports import GeneratedPlan
from ..tasks.task_models import TaskDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    base_url: str | None
    key_field: str  # attribute on Settings
    key_env: str  # shown in error messages


# Every provider is reached through its OpenAI-compatible endpoint.
PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(None, "openai_api_key", "OPENAI_API_KEY"),
    "google": ProviderSpec(
        "https://generativelanguage.googleapis.com/v1beta/openai/",
        "google_api_key",
        "GOOGLE_GENERATIVE_AI_API_KEY",
    ),
    "deepseek": ProviderSpec("https://api.deepseek.com", "deepseek_api_key", "DEEPSEEK_API_KEY"),
}

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "projectPlan": {"type": "string"},
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "toolRecommendations": {"type": "string"},
                    "ruleRecommendations": {"type": "string"},
                },
                "required": ["title", "description"],
            },
        },
    },
    "required": ["tasks"],
}

SYSTEM_PROMPT = (
    "You are a project planner. Break the user's request into an ordered list of "
    "small, concrete tasks. Reply with a single JSON object and nothing else."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def build_plan_prompt(prompt: str, attachments: list[str]) -> str:
    """Wrap the request, the output schema and each attachment in XML-ish tags."""
    out = f"<prompt>{prompt}</prompt>"
    out += (
        "\n<outputFormat>Return your output as JSON formatted according to the following schema: "
        f"{json.dumps(PLAN_SCHEMA, indent=2)}</outputFormat>"
    )
    for content in attachments:
        out += f"\n<attachment>{content}</attachment>"
    return out


def parse_plan_output(text: str) -> GeneratedPlan:
    """Parse the model reply into a GeneratedPlan; anything off-schema is an LLM error."""
    raw = (text or "").strip()
    m = _FENCE_RE.match(raw)
    if m:
        raw = m.group(1)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AppError("LLM returned invalid JSON for the project plan", ErrorCode.LLM_GENERATION_ERROR, e) from e

    if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
        raise AppError("LLM response is missing the 'tasks' list", ErrorCode.LLM_GENERATION_ERROR)

    tasks: list[TaskDefinition] = []
    for item in data["tasks"]:
        if not isinstance(item, dict):
            continue
        definition = TaskDefinition.from_dict(item)
        if not definition.title.strip():
            continue
        tasks.append(definition)

    plan = data.get("projectPlan")
    return GeneratedPlan(tasks=tasks, project_plan=str(plan) if plan else None)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"AuthenticationError", "PermissionDeniedError", "UnauthorizedError"}


def _is_not_found_error(exc: Exception) -> bool:
    # OpenAI-compatible APIs answer 404 for unknown models
    return isinstance(exc, openai.NotFoundError) or exc.__class__.__name__ == "NotFoundError"


class OpenAIPlanGenerator:
    """
    PlanGenerator backed by the openai SDK.

    Clients are created lazily per provider, so a missing key only matters
    when that provider is actually used.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: dict[str, OpenAI] = {}

    def _get_client(self, provider: str, spec: ProviderSpec) -> OpenAI:
        client = self._clients.get(provider)
        if client is not None:
            return client

        api_key = getattr(self._settings, spec.key_field, None)
        if not api_key or not str(api_key).strip():
            raise AppError(
                f"Missing API key environment variable required for {provider} (set {spec.key_env})",
                ErrorCode.CONFIGURATION_ERROR,
            )

        timeout = httpx.Timeout(
            connect=self._settings.llm_connect_timeout,
            read=self._settings.llm_read_timeout,
            write=10.0,
            pool=self._settings.llm_connect_timeout,
        )
        client = OpenAI(
            api_key=str(api_key),
            base_url=spec.base_url,
            timeout=timeout,
            max_retries=1,
        )
        self._clients[provider] = client
        return client

    @staticmethod
    def _complete(client: OpenAI, model: str, prompt: str) -> str:
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
        )
        if not resp.choices:
            return ""
        return resp.choices[0].message.content or ""

    async def generate_plan(
            self,
            *,
            prompt: str,
            attachments: list[str],
            provider: str | None = None,
            model: str | None = None,
    ) -> GeneratedPlan:
        provider = (provider or self._settings.default_provider).strip().lower()
        model = (model or self._settings.default_model).strip()

        spec = PROVIDERS.get(provider)
        if spec is None:
            raise AppError(f"Invalid provider: {provider}", ErrorCode.INVALID_PROVIDER)

        client = self._get_client(provider, spec)
        llm_prompt = build_plan_prompt(prompt, attachments)

        logger.info("LLM: generating plan provider=%s model=%s attachments=%d", provider, model, len(attachments))
        try:
            text = await asyncio.to_thread(self._complete, client, model, llm_prompt)
        except Exception as e:
            if _is_auth_error(e):
                raise AppError(
                    f"Missing API key environment variable required for {provider}",
                    ErrorCode.CONFIGURATION_ERROR,
                    e,
                ) from e
            if _is_not_found_error(e):
                raise AppError(
                    f"Invalid model: {model} is not available for {provider}",
                    ErrorCode.INVALID_MODEL,
                    e,
                ) from e
            raise AppError(
                "Failed to generate project plan due to an unexpected error",
                ErrorCode.LLM_GENERATION_ERROR,
                e,
            ) from e

        plan = parse_plan_output(text)
        logger.debug("LLM: plan parsed tasks=%d", len(plan.tasks))
        return plan
