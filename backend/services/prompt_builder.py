"""
Prompt Builder - System instruction and message list for a coaching turn
"""

from __future__ import annotations

from models.chat import ChatHistoryItem
from models.settings import CoachingStyle, PersonaMode, ResponseStyle, Settings
from models.tab_state import CodeSnapshot, ProblemContext

COACHING_INSTRUCTIONS = {
    CoachingStyle.INTERVIEWER: (
        "You are a mock technical interviewer and reasoning coach. "
        "Use progressive hints and avoid full solutions unless explicitly requested. "
        "Push for edge cases, complexity, and tradeoffs."
    ),
    CoachingStyle.COLLABORATIVE: (
        "You are a collaborative coding coach. Give practical guidance and direct next steps. "
        "Only reveal full solutions when the user asks for one."
    ),
    CoachingStyle.SOCRATIC: (
        "You are a Socratic coding coach. Ask concise guiding questions before giving direct answers. "
        "Give direct answers only if the user asks explicitly."
    ),
}

PERSONA_INSTRUCTIONS = {
    PersonaMode.COLLABORATOR: (
        "You are a collaborative coding partner. Be direct, practical, and unblock quickly "
        "with concise snippets when useful. If the user explicitly asks for a full solution, provide it."
    ),
    PersonaMode.INTERVIEWER: (
        "You are a strict technical interviewer. Use Socratic coaching, ask clarifying questions, "
        "and avoid full code unless the user explicitly asks for the full solution."
    ),
}

RESPONSE_INSTRUCTIONS = {
    ResponseStyle.CONCISE: "Keep responses concise and high signal.",
    ResponseStyle.BALANCED: "Balance concise guidance with enough detail to unblock quickly.",
    ResponseStyle.DETAILED: "Use detailed step-by-step reasoning with pitfalls and tradeoffs.",
}


def coaching_instruction(settings: Settings, persona_mode: PersonaMode | None = None) -> str:
    if persona_mode is not None:
        return PERSONA_INSTRUCTIONS[persona_mode]
    return COACHING_INSTRUCTIONS[settings.coaching_style]


def serialize_context(context: ProblemContext | None) -> str:
    """Render the parsed problem for the model; empty when there is none"""
    if context is None:
        return ""
    return "\n".join(
        [
            "Use this parsed problem context:",
            f"Site: {context.site.value}",
            f"URL: {context.url or 'unknown'}",
            f"Title: {context.title or 'Unknown'}",
            "",
            "Problem Statement:",
            context.description or "(missing)",
            "",
            "Constraints:",
            context.constraints or "(none)",
            "",
            "Examples:",
            context.examples or "(none)",
            "",
            f"Extraction Confidence: {round(context.confidence * 100)}%",
        ]
    )


def serialize_code(snapshot: CodeSnapshot | None) -> str:
    """Render the captured code; empty when there is none"""
    if snapshot is None or not snapshot.code.strip():
        return ""
    selection = (
        f"Selection: {snapshot.selection.start}-{snapshot.selection.end}"
        if snapshot.selection
        else "Selection: none"
    )
    return "\n".join(
        [
            "Current Code Snapshot:",
            f"Source: {snapshot.source.value}",
            f"Language: {snapshot.language or 'unknown'}",
            selection,
            "```",
            snapshot.code,
            "```",
        ]
    )


def build_system_prompt(
    settings: Settings,
    context: ProblemContext | None,
    snapshot: CodeSnapshot | None,
    persona_mode: PersonaMode | None = None,
) -> str:
    """Join the instruction sections in fixed order, skipping empty ones.

    Later sections take precedence over earlier ones when they conflict, so the
    order is: coaching style, response verbosity, the user's own fragment,
    problem context, code snapshot.
    """
    sections = [
        coaching_instruction(settings, persona_mode),
        RESPONSE_INSTRUCTIONS[settings.response_style],
        settings.system_prompt_override.strip(),
        serialize_context(context),
        serialize_code(snapshot),
    ]
    return "\n\n".join(section for section in sections if section)


def build_messages(history: list[ChatHistoryItem], user_text: str) -> list[dict[str, str]]:
    """Provider-neutral message list: prior turns then the new user turn"""
    messages = [{"role": item.role, "content": item.content} for item in history]
    messages.append({"role": "user", "content": user_text})
    return messages
