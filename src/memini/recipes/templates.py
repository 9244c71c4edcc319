"""Built-in recipe templates offered by ``auto templates`` and ``auto scaffold``."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RecipeTemplate:
    name: str
    description: str
    interval_secs: int
    instructions: str
    persona: str
    tools: tuple[str, ...] = ()


BUILTIN_TEMPLATES: dict[str, RecipeTemplate] = {
    template.name: template
    for template in (
        RecipeTemplate(
            name="briefing",
            description="Hourly briefing of what changed and what needs attention",
            interval_secs=3600,
            instructions=(
                "Review recent memories and open threads. Write a short briefing: what changed, "
                "what is blocked, and the single most useful next action."
            ),
            persona="You are a background briefing agent. Be brief and concrete.",
            tools=("none",),
        ),
        RecipeTemplate(
            name="digest",
            description="Two-hourly digest of recent conversation themes",
            interval_secs=7200,
            instructions=(
                "Summarize the themes of recent conversations as a bulleted digest. "
                "Call out decisions made and questions left open."
            ),
            persona="You are a background digest agent. Group related items and skip noise.",
            tools=("none",),
        ),
        RecipeTemplate(
            name="inbox-watch",
            description="Checks every 15 minutes for items that need the operator",
            interval_secs=900,
            instructions=(
                "Look for anything that needs the operator's decision. If something does, ask "
                "about it; otherwise answer 'nothing new'."
            ),
            persona="You are a watchful background agent. Only escalate real decisions.",
        ),
    )
}


__all__ = ["BUILTIN_TEMPLATES", "RecipeTemplate"]
