"""Prompt construction for session debriefs."""
import json
from dataclasses import dataclass

from debrief_service.llm.base import PromptBuilder
from debrief_service.llm.schemas import SESSION_DEBRIEF_SCHEMA
from debrief_service.schemas.debrief import DebriefContextPayload

DEBRIEF_SYSTEM_PROMPT = """
You are a strength coach writing a short debrief of a workout the athlete just finished.
Be specific and encouraging, reference the numbers you are given, and never invent lifts,
records or dates that are not in the context.

Rules:
- Respond with a single JSON object and nothing else (no markdown fences, no prose around it).
- "summary" is required: 2-4 sentences.
- Only include "prHighlights" for exercises whose prFlags are non-empty in the context.
- "adherenceScore" is 0-100 and should follow adherence.rollingCompliance.
- "focusAreas" has at most 3 entries, each with 1-3 concrete actions.
- "streakContext" mirrors the streak numbers in the context.
- If a previous debrief exists, do not repeat it word for word.
"""


@dataclass(frozen=True)
class DebriefPrompt:
    system: str
    prompt: str


def build_session_debrief_prompt(payload: DebriefContextPayload) -> DebriefPrompt:
    """Turn a context payload into system and user prompt text."""
    builder = PromptBuilder()
    builder.system(DEBRIEF_SYSTEM_PROMPT)
    builder.system(f"JSON schema for the response:\n{json.dumps(SESSION_DEBRIEF_SCHEMA)}")

    locale_line = f"Write in the language and number formatting of locale {payload.locale}."
    if payload.timezone:
        locale_line += f" Express dates in the {payload.timezone} timezone."
    builder.user(locale_line)

    context_json = payload.context.model_dump_json(by_alias=True, exclude_none=True)
    builder.user(f"Session context:\n{context_json}")

    return DebriefPrompt(system=builder.system_text, prompt=builder.user_text)
