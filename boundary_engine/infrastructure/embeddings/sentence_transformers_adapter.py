from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from importlib import import_module
from typing import Any

from boundary_engine.application.ports.embedding_port import EmbeddingPort
from boundary_engine.domain.errors import (
    DomainError,
    MalformedResponse,
    ProviderUnavailable,
)
from boundary_engine.domain.types import Result, Vector

logger = logging.getLogger(__name__)

PROVIDER = "sentence-transformers"


@dataclass
class SentenceTransformersEmbeddingAdapter(EmbeddingPort):
    """Local Sentence-Transformers embeddings, run off the event loop.

    The model is loaded on first use; encoding is CPU/GPU bound and goes
    through ``asyncio.to_thread`` so concurrent scoring keeps flowing.
    """

    model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    device: str = "cpu"  # "cuda" | "mps" when available
    local_files_only: bool = False  # offline deployments
    _model: Any | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _ensure_model(self) -> Any:
        with self._lock:
            if self._model is None:
                module = import_module("sentence_transformers")
                self._model = module.SentenceTransformer(
                    self.model_name,
                    device=self.device,
                    local_files_only=self.local_files_only,
                )
        return self._model

    def _encode(self, text: str) -> Vector:
        np = import_module("numpy")
        model = self._ensure_model()
        raw = model.encode(text, normalize_embeddings=True, convert_to_numpy=True)
        arr = np.asarray(raw, dtype=np.float64).reshape(-1)
        if arr.size == 0 or not bool(np.isfinite(arr).all()):
            raise ValueError("embedding is empty or contains non-finite values")
        return tuple(float(x) for x in arr)

    async def embed(self, text: str) -> Result[Vector, DomainError]:
        try:
            vector = await asyncio.to_thread(self._encode, text)
        except ImportError as ex:
            return Result.failure(
                ProviderUnavailable(f"sentence-transformers not installed: {ex}", provider=PROVIDER)
            )
        except ValueError as ex:
            return Result.failure(MalformedResponse(str(ex), provider=PROVIDER))
        except Exception as ex:  # noqa: BLE001
            # Translate external errors to domain-specific errors
            logger.warning("embedding with %s failed: %s", self.model_name, ex)
            return Result.failure(
                ProviderUnavailable(f"embedding failed: {ex}", provider=PROVIDER)
            )
        return Result.success(vector)
