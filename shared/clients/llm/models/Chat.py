"""Chat completion request models shared by all LLM engines."""

from typing import Literal

from pydantic import BaseModel, Field


ReasoningEffort = Literal["none", "low", "medium", "high"]


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class GenerationSettings(BaseModel):
    """Sampling settings forwarded to the completion provider.

    A ``reasoning_effort`` of "none" means no reasoning block is sent at all.
    """

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2048, gt=0)
    reasoning_effort: ReasoningEffort = "none"
