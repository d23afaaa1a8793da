from __future__ import annotations

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Mapping

from portal.config import Settings


logger = logging.getLogger("portal.embeddings")

EMBEDDING_MODES = ("hash", "bedrock")
MIN_HASH_DIM = 8

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float]
    provider: str


class EmbeddingProviderError(RuntimeError):
    """Raised when a summary cannot be turned into a vector."""


def build_summary_text(proposal: Mapping[str, object]) -> str:
    return (
        f"Title: {proposal.get('project_title') or ''}. "
        f"Objectives: {proposal.get('objectives') or ''}. "
        f"Novelty: {proposal.get('rd_components') or ''}"
    )


def l2_normalize(values: list[float]) -> list[float]:
    length = math.hypot(*values) if values else 0.0
    if not length:
        return list(values)
    return [value / length for value in values]


def _decode_body(body: object) -> dict[str, Any]:
    if hasattr(body, "read"):
        body = body.read()
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    if not isinstance(body, str):
        raise EmbeddingProviderError("Titan response body is neither bytes nor text.")
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise EmbeddingProviderError("Titan response body is not JSON.") from exc
    if not isinstance(decoded, dict):
        raise EmbeddingProviderError("Titan response body is not a JSON object.")
    return decoded


class BedrockEmbeddingClient:
    """Amazon Titan text embeddings through ``bedrock-runtime.invoke_model``."""

    def __init__(self, *, aws_region: str, model_id: str, client: Any | None = None) -> None:
        self.aws_region = aws_region
        self.model_id = model_id
        self._runtime = client

    def embed(self, text: str, dim: int) -> list[float]:
        request: dict[str, object] = {"inputText": text, "normalize": True}
        if dim > 0:
            request["dimensions"] = dim

        response = self._runtime_client().invoke_model(
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(request).encode("utf-8"),
        )
        if "body" not in response:
            raise EmbeddingProviderError("Titan response has no body.")

        vector = _decode_body(response["body"]).get("embedding")
        if not isinstance(vector, list) or not vector or not all(isinstance(v, (int, float)) for v in vector):
            raise EmbeddingProviderError("Titan response has no 'embedding' vector.")
        return l2_normalize([float(v) for v in vector])

    def _runtime_client(self) -> Any:
        if self._runtime is None:
            import boto3

            self._runtime = boto3.client("bedrock-runtime", region_name=self.aws_region)
        return self._runtime


class EmbeddingService:
    """Turns proposal and past-project summaries into vectors.

    ``hash`` mode is deterministic and offline, for development and tests.
    ``bedrock`` mode calls the hosted Titan model. A Bedrock failure surfaces
    as :class:`EmbeddingProviderError`. It is not retried and never replaced
    with a hash vector, since the two spaces are not comparable.
    """

    def __init__(
        self,
        *,
        mode: str,
        aws_region: str,
        bedrock_model_id: str,
        bedrock_client: BedrockEmbeddingClient | None = None,
    ) -> None:
        mode = mode.strip().lower()
        if mode not in EMBEDDING_MODES:
            raise ValueError(f"Unknown embedding mode '{mode}'; expected one of {', '.join(EMBEDDING_MODES)}.")
        self.mode = mode
        self.aws_region = aws_region
        self.bedrock_model_id = bedrock_model_id.strip()
        self._bedrock = bedrock_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingService":
        return cls(
            mode=settings.embedding_mode,
            aws_region=settings.aws_region,
            bedrock_model_id=settings.bedrock_embedding_model_id,
        )

    def describe(self) -> dict[str, object]:
        return {"mode": self.mode, "bedrock_model_id": self.bedrock_model_id if self.mode == "bedrock" else None}

    def embed(self, text: str, dim: int) -> EmbeddingResult:
        if self.mode == "bedrock":
            return EmbeddingResult(vector=self._titan_vector(text, dim), provider="bedrock")
        return EmbeddingResult(vector=embed_text(text, dim), provider="hash")

    def _titan_vector(self, text: str, dim: int) -> list[float]:
        if not self.bedrock_model_id:
            raise EmbeddingProviderError("BEDROCK_EMBEDDING_MODEL_ID is empty.")
        if self._bedrock is None:
            self._bedrock = BedrockEmbeddingClient(aws_region=self.aws_region, model_id=self.bedrock_model_id)

        try:
            return self._bedrock.embed(text, dim)
        except EmbeddingProviderError as exc:
            self._log_failure(exc)
            raise
        except Exception as exc:
            self._log_failure(exc)
            raise EmbeddingProviderError(f"Bedrock embedding failed: {exc}") from exc

    def _log_failure(self, exc: Exception) -> None:
        logger.warning(
            "embedding_provider_failed",
            extra={
                "event": "embedding_provider_failed",
                "model_id": self.bedrock_model_id,
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )


def embed_text(text: str, dim: int) -> list[float]:
    """Signed feature hashing of lower-cased words into ``dim`` buckets."""
    if dim < MIN_HASH_DIM:
        raise ValueError(f"hash embeddings need at least {MIN_HASH_DIM} dimensions")
    buckets = [0.0] * dim
    for word in _WORD_PATTERN.findall(text.lower()):
        digest = hashlib.blake2b(word.encode("utf-8"), digest_size=8).digest()
        bucket = int.from_bytes(digest[:4], "little") % dim
        buckets[bucket] += -1.0 if digest[4] & 1 else 1.0
    return l2_normalize(buckets)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"cannot compare vectors of length {len(a)} and {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    denominator = math.hypot(*a) * math.hypot(*b) if a else 0.0
    return float(dot / denominator) if denominator else 0.0
