"""Tweet prompt composition and streamed completions from Gemini."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

from .errors import ConfigError, UpstreamError
from .records import Message

logger = logging.getLogger(__name__)


# -----------------------------
# Types & defaults
# -----------------------------
class Tone(str, Enum):
    FUNNY = "Funny"
    PROFESSIONAL = "Professional"
    INSPIRATIONAL = "Inspirational"
    WITTY = "Witty"


class Goal(str, Enum):
    ENGAGEMENT = "Engagement"
    INFORMATIVE = "Informative"
    PROMOTION = "Promotion"


class Audience(str, Enum):
    TECH = "Tech"
    MARKETING = "Marketing"
    FOUNDERS = "Founders"
    GENERAL = "General"


DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_HISTORY_WINDOW = 4

SYSTEM_PROMPT = """You are an expert AI Twitter copywriter and creative assistant.

Your role is to help users craft highly engaging, concise, and personalized tweets (under 280 characters) based on detailed input. You must interpret and use all available context to create a compelling tweet aligned with the user's objectives and audience preferences.

Key Requirements:
1. Keep tweets under 280 characters
2. Use the provided tone and style
3. Target the specified audience
4. Make it engaging and shareable
5. Avoid sensitive or controversial content
6. Use emojis sparingly and appropriately

Return ONLY the tweet text, no explanations or additional text."""


@dataclass
class PromptSpec:
    """What the caller wants written. ``None`` preferences are left to the model."""

    prompt: str
    tone: Optional[Tone] = None
    goal: Optional[Goal] = None
    audience: Optional[Audience] = None
    conversation_history: List[Message] = field(default_factory=list)


@dataclass
class GenerationConfig:
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None


class CompletionModel(Protocol):
    def stream(self, instruction: str) -> AsyncIterator[str]:
        ...


# -----------------------------
# Prompt composition
# -----------------------------
def compose_instruction(spec: PromptSpec, *, history_window: int = DEFAULT_HISTORY_WINDOW) -> str:
    """Render a PromptSpec into the single instruction string sent to the model.

    Preference lines appear only for preferences that are set, and the
    context block only when there is history. Only the last
    ``history_window`` turns are kept; older ones are dropped.
    """
    lines: List[str] = [SYSTEM_PROMPT, "", "Create a tweet with the following specifications:"]

    if spec.tone is not None:
        lines.append(f"Tone: {spec.tone.value}")
    if spec.goal is not None:
        lines.append(f"Goal: {spec.goal.value}")
    if spec.audience is not None:
        lines.append(f"Target Audience: {spec.audience.value}")

    history = _window(spec.conversation_history, history_window)
    if history:
        lines.append("")
        lines.append("Previous conversation context:")
        for m in history:
            label = "User" if m.role == "user" else "Assistant"
            lines.append(f"{label}: {m.content}")

    lines.append("")
    lines.append(f"User's request: {spec.prompt}")
    lines.append("")
    lines.append("Generate a tweet that matches these specifications.")
    return "\n".join(lines)


def _window(history: Sequence[Message], size: int) -> List[Message]:
    if size <= 0:
        return []
    return list(history[-size:])


# -----------------------------
# Gemini wrapper
# -----------------------------
class GeminiModel:
    """Thin wrapper around :mod:`google.genai` exposing a fragment stream."""

    def __init__(
        self,
        api_key: str,
        model_name: str = DEFAULT_MODEL,
        *,
        generation: Optional[GenerationConfig] = None,
    ) -> None:
        if not api_key:
            raise ConfigError(
                "A Gemini API key is required (llm.api_key / GEMINI_API_KEY). "
                "Get one from https://aistudio.google.com/apikey"
            )
        from google import genai

        self.model_name = model_name
        self.generation = generation or GenerationConfig()
        self._client = genai.Client(api_key=api_key)

    def _config(self) -> Any:
        from google.genai import types

        params = {k: v for k, v in vars(self.generation).items() if v is not None}
        return types.GenerateContentConfig(**params) if params else None

    async def stream(self, instruction: str) -> AsyncIterator[str]:
        """Yield response text fragments in the order the provider emits them."""
        response = await self._client.aio.models.generate_content_stream(
            model=self.model_name,
            contents=instruction,
            config=self._config(),
        )
        async for chunk in response:
            text = chunk.text
            if text:
                yield text


# -----------------------------
# Relay
# -----------------------------
async def relay(
    model: CompletionModel,
    spec: PromptSpec,
    *,
    history_window: int = DEFAULT_HISTORY_WINDOW,
) -> AsyncIterator[str]:
    """Forward a composed prompt to ``model`` and yield its fragments unchanged.

    The iterator ends when the provider signals end of generation. Any
    provider failure, before or after the first fragment, surfaces as
    :class:`UpstreamError` once the fragments already produced have been
    yielded; nothing is retried.
    """
    instruction = compose_instruction(spec, history_window=history_window)
    produced = 0
    try:
        async for fragment in model.stream(instruction):
            if not fragment:
                continue
            produced += 1
            yield fragment
    except Exception as e:
        logger.exception("Generation failed after %d fragment(s)", produced)
        raise UpstreamError("Failed to generate response", details={"fragments": produced}) from e


# -----------------------------
# Convenience factory
# -----------------------------
def create_model(cfg: Dict[str, Any]) -> GeminiModel:
    """Create a GeminiModel from a config dict (e.g., loaded YAML)."""
    llm_cfg = (cfg or {}).get("llm", {}) if isinstance(cfg, dict) else {}
    generation = GenerationConfig(
        temperature=llm_cfg.get("temperature"),
        max_output_tokens=llm_cfg.get("max_output_tokens"),
    )
    return GeminiModel(
        api_key=llm_cfg.get("api_key") or "",
        model_name=llm_cfg.get("model_name") or DEFAULT_MODEL,
        generation=generation,
    )
