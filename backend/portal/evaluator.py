from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

from portal.config import Settings
from portal.prompts import SYSTEM_PROMPT

logger = logging.getLogger("portal.evaluator")

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", flags=re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")


class EvaluationRuntimeError(RuntimeError):
    """Raised when the hosted evaluation model cannot be invoked."""


class EvaluationParseError(ValueError):
    """Raised when the model response is not a JSON object."""


def strip_code_fence(raw: str) -> str:
    candidate = raw.strip()
    if not candidate.startswith("```"):
        return candidate
    candidate = _LEADING_FENCE.sub("", candidate, count=1)
    return _TRAILING_FENCE.sub("", candidate, count=1).strip()


def parse_evaluation_response(raw: str) -> dict[str, object]:
    text = strip_code_fence(raw)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EvaluationParseError("Failed to parse model response as JSON.") from exc
    if not isinstance(payload, dict):
        raise EvaluationParseError("Model response must be a JSON object.")
    return payload


class BedrockEvaluationClient:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def model_id(self) -> str:
        return self._settings.bedrock_model_id

    def evaluate(self, prompt: str) -> dict[str, object]:
        model_id = self._settings.bedrock_model_id
        if not model_id:
            raise EvaluationRuntimeError("Bedrock model ID is not configured.")

        started = time.perf_counter()
        try:
            response = self._get_client().converse(
                modelId=model_id,
                system=[{"text": SYSTEM_PROMPT}],
                messages=[{"role": "user", "content": [{"text": prompt}]}],
                inferenceConfig={
                    "temperature": self._settings.agent_temperature,
                    "maxTokens": self._settings.agent_max_tokens,
                },
            )
        except Exception as exc:
            logger.warning(
                "evaluation_invoke_failed",
                extra={
                    "event": "evaluation_invoke_failed",
                    "model_id": model_id,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error": str(exc),
                },
            )
            raise EvaluationRuntimeError(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

        text = self._extract_text(response)
        try:
            payload = parse_evaluation_response(text)
        except EvaluationParseError:
            logger.error(
                "evaluation_parse_failed",
                extra={
                    "event": "evaluation_parse_failed",
                    "model_id": model_id,
                    "response_chars": len(text),
                    "response_preview": text[:200],
                },
            )
            raise

        logger.info(
            "evaluation_invoke_completed",
            extra={
                "event": "evaluation_invoke_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "prompt_chars": len(prompt),
                "response_chars": len(text),
            },
        )
        return payload

    def _get_client(self) -> Any:
        if self._client is None:
            import boto3

            self._client = boto3.client("bedrock-runtime", region_name=self._settings.aws_region)
        return self._client

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts: list[str] = []
        for item in outputs:
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
        if not parts:
            raise EvaluationParseError("Model response did not include textual output.")
        return "\n".join(parts).strip()
