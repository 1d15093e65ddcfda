"""Pydantic schemas for generation requests and responses.

The governance layer never builds prompts or talks to a provider itself; it
only sees these shapes flowing through a caller-supplied generation function.
"""

from typing import Awaitable, Callable

from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    """Parameters of one provider generation call."""

    prompt: str = Field(..., min_length=1, description="User prompt sent to the model.")
    model: str | None = Field(None, description="Model identifier; provider default when omitted.")
    system_prompt: str | None = Field(None, description="Optional system instruction.")
    temperature: float | None = Field(
        None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature; unset requests are never cached.",
    )
    max_tokens: int | None = Field(None, ge=1, description="Completion token cap.")


class GenerationResponse(BaseModel):
    """Provider output as memoized by the response cache."""

    text: str = Field(..., description="Generated text.")
    model: str = Field(..., description="Model that produced the text.")
    tokens_used: int | None = Field(
        None,
        ge=0,
        description="Actual tokens consumed, when the provider reports it.",
    )


GenerateFn = Callable[[GenerationRequest], Awaitable[GenerationResponse]]
