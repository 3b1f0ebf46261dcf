# llm.py
# OpenRouter completion client with an ordered model-fallback list.
#
# Every call walks the configured models in order and returns the first
# answer. A model that errors (rate limit, 5xx, client error, network) or,
# for JSON calls, answers with unparseable or schema-invalid text is skipped.
# Only when the list is exhausted does the call raise.

import json
import re
import time
from typing import Any, Callable

from openai import APIError, OpenAI
from pydantic import BaseModel, ValidationError

from health_journal import display
from health_journal.errors import AllModelsFailedError


def _strip_fences(text: str) -> str:
    """Remove a surrounding markdown code fence if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```$", "", text)
    return text


def parse_json_text(text: str) -> Any:
    """Parse model output as JSON. Raises json.JSONDecodeError."""
    # strict=False tolerates literal newlines inside strings
    return json.loads(_strip_fences(text), strict=False)


def _tighten(node: Any) -> None:
    if isinstance(node, list):
        for item in node:
            _tighten(item)
        return
    if not isinstance(node, dict):
        return
    node.pop("default", None)
    properties = node.get("properties")
    if isinstance(properties, dict):
        node["additionalProperties"] = False
        node["required"] = list(properties)
        for child in properties.values():
            _tighten(child)
    for key in ("items", "anyOf", "allOf"):
        if key in node:
            _tighten(node[key])
    for child in (node.get("$defs") or {}).values():
        _tighten(child)


def strict_json_schema(schema: type[BaseModel]) -> dict:
    """
    The model's JSON schema in the form strict structured output accepts:
    every property required (optional ones stay nullable), no extra keys,
    no defaults.
    """
    document = schema.model_json_schema()
    _tighten(document)
    return document


class LLMRouter:
    """
    Completion client over the OpenRouter chat API.

    Example:
        router = LLMRouter(api_key="...", models=["qwen/qwen3-30b-a3b:free"])
        text = router.complete("Summarize this.", "You are terse.")
    """

    def __init__(
        self,
        api_key: str | None,
        models: list[str],
        json_models: list[str] | None = None,
        base_url: str = "https://openrouter.ai/api/v1",
        retry_delay: float = 2.0,
        client: Any = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._models = list(models)
        self._json_models = list(json_models or [])
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._client = client or OpenAI(base_url=base_url, api_key=api_key or "missing")

    @property
    def models(self) -> list[str]:
        return list(self._models)

    # ------------------------------------------------------------------
    # Low-level model call
    # ------------------------------------------------------------------

    def _call_model(self, model: str, prompt: str, system_prompt: str, **extra: Any) -> str:
        response = self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            **extra,
        )
        # OpenRouter can answer 200 with an error body and no choices
        choices = getattr(response, "choices", None)
        if not choices:
            raise ValueError("model returned no choices")
        message = choices[0].message
        content = message.content if message is not None else None
        if content is None:
            raise ValueError("model returned an empty message")
        return content.strip()

    def _with_fallback(
        self,
        models: list[str],
        task: str,
        attempt: Callable[[str], Any],
    ) -> Any:
        for index, model in enumerate(models):
            display.model_attempt(task, index, len(models), model)
            try:
                result = attempt(model)
            except (APIError, ValueError, ValidationError) as exc:
                display.model_failed(task, model, str(exc))
                if index < len(models) - 1:
                    self._sleep(self._retry_delay)
                continue
            display.model_succeeded(task, model)
            return result

        display.all_models_failed(task, len(models))
        raise AllModelsFailedError(f"{task}: all {len(models)} fallback model(s) failed")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def complete(self, prompt: str, system_prompt: str, task: str = "AI Task") -> str:
        """Free-text completion. Raises AllModelsFailedError."""
        return self._with_fallback(
            self._models,
            task,
            lambda model: self._call_model(model, prompt, system_prompt),
        )

    def complete_json(
        self,
        prompt: str,
        system_prompt: str,
        schema: type[BaseModel] | None = None,
        task: str = "AI JSON Task",
    ) -> dict:
        """
        JSON completion. When a pydantic schema is given the model is asked for
        native structured output and the parsed object must validate against it.

        Raises AllModelsFailedError.
        """
        if schema is not None:
            response_format = {
                "type": "json_schema",
                "json_schema": {
                    "name": "response",
                    "schema": strict_json_schema(schema),
                    "strict": True,
                },
            }
        else:
            response_format = {"type": "json_object"}

        def attempt(model: str) -> dict:
            raw = self._call_model(model, prompt, system_prompt, response_format=response_format)
            # JSONDecodeError is a ValueError, so non-JSON text falls through to the next model
            data = parse_json_text(raw)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            if schema is not None:
                schema.model_validate(data)
            return data

        return self._with_fallback(self._json_models or self._models, task, attempt)
