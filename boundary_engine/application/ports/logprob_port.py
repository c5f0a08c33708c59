from typing import Protocol, runtime_checkable

from boundary_engine.domain.errors import DomainError
from boundary_engine.domain.models import TokenLogProb
from boundary_engine.domain.types import Result


@runtime_checkable
class LogProbPort(Protocol):
    async def score_tokens(
        self, text: str, context: str = ""
    ) -> Result[list[TokenLogProb], DomainError]:
        """Per-token log-probabilities of ``text`` conditioned on ``context``.

        Only the tokens of ``text`` are returned; context tokens are scored
        by the provider but dropped.
        """
        ...
