"""Application ports package.

Re-exports the provider contracts the engine consumes.
"""

from boundary_engine.application.ports.embedding_port import EmbeddingPort
from boundary_engine.application.ports.llm_port import ChatMessage, LLMPort, LLMResponse
from boundary_engine.application.ports.logprob_port import LogProbPort

__all__ = [
    "ChatMessage",
    "EmbeddingPort",
    "LLMPort",
    "LLMResponse",
    "LogProbPort",
]
