from typing import Protocol, runtime_checkable

from boundary_engine.domain.errors import DomainError
from boundary_engine.domain.types import Result, Vector


@runtime_checkable
class EmbeddingPort(Protocol):
    async def embed(self, text: str) -> Result[Vector, DomainError]: ...
