"""Output token budget and temperature per (provider, task kind).

Both adapter variants receive the budget computed here, so callers never
see a difference depending on whether a provider streams or not.
"""

from __future__ import annotations

from dataclasses import dataclass

from schemas.generation import Provider, TaskKind


# Hard output ceilings per provider. Claude's figure assumes the 128k output
# beta header sent by AnthropicAdapter; the gateway stays well under it.
PROVIDER_MAX_OUTPUT_TOKENS: dict[Provider, int] = {
    Provider.CLAUDE: 64_000,
    Provider.OPENAI: 16_384,
    Provider.GEMINI: 65_536,
}

# Outlines must come back as compact JSON; a small budget keeps latency low
# and the repair engine handles the occasional cut-off.
OUTLINE_MAX_OUTPUT_TOKENS = 8_192

TASK_TEMPERATURE: dict[TaskKind, float] = {
    TaskKind.OUTLINE: 0.3,
    TaskKind.CHAPTER: 0.7,
    TaskKind.CONTENT: 0.7,
}


@dataclass(frozen=True)
class GenerationBudget:
    max_tokens: int
    temperature: float


def clamp_max_tokens(provider: Provider, requested: int) -> int:
    """Clamp a token budget into ``[1, provider ceiling]``."""
    return max(1, min(requested, PROVIDER_MAX_OUTPUT_TOKENS[provider]))


def budget_for(provider: Provider, task: TaskKind) -> GenerationBudget:
    ceiling = PROVIDER_MAX_OUTPUT_TOKENS[provider]
    requested = OUTLINE_MAX_OUTPUT_TOKENS if task is TaskKind.OUTLINE else ceiling
    return GenerationBudget(
        max_tokens=clamp_max_tokens(provider, requested),
        temperature=TASK_TEMPERATURE[task],
    )
