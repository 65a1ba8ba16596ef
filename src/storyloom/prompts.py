"""Prompt text sent to the generation endpoint. Pure string builders."""

from __future__ import annotations

from typing import Optional

DEFAULT_LANGUAGE = "Simplified Chinese"

# Labels the UI uses for "no particular action"; they never constrain output.
_NEUTRAL_HINTS = {"", "🎭 Actions", "🤖 Auto"}

TEST_CONNECTION_PROMPT = "Hello, are you online? Reply with 'Yes' if you are."


def _concrete_hint(action_hint: Optional[str]) -> Optional[str]:
    hint = (action_hint or "").strip()
    return None if hint in _NEUTRAL_HINTS else hint


def build_system_prompt(
    background: str,
    protagonist: str,
    summary: str,
    action_hint: Optional[str] = None,
    language: str = DEFAULT_LANGUAGE,
) -> str:
    """System prompt for story generation.

    Parameters
    ----------
    background : str
        World background.
    protagonist : str
        Protagonist description.
    summary : str
        Running summary of folded turns; omitted when blank.
    action_hint : str | None
        Optional action type chosen by the user ("Speak", "Think", "Action").
    """
    directives = (
        "You are an expert interactive fiction co-author. Your goal is to write immersive, engaging narrative text.\n"
        "DIRECTIVES:\n"
        f"- Language & Format: You MUST write the story entirely in {language}. Do NOT use markdown formatting "
        "or special characters such as '*', '#', or '\\' in your text.\n"
        "- Tone & Style: Strictly match the atmosphere of the World Background.\n"
        "- Show, Don't Tell: Drive the plot forward through character actions, sensory details, and dialogue.\n"
        "- State Integration: The current story state contains facts, inventory, and character states. "
        "Weave these facts into the narrative without listing them.\n"
        "- Continuity: Keep the protagonist's actions and thoughts aligned with their persona.\n"
        "- NO Options or Choices: Do NOT end with options, questions, or choices. Output pure narrative prose only."
    )
    hint = _concrete_hint(action_hint)
    if hint:
        directives += (
            f"\n- CRITICAL ACTION CONSTRAINT: The user has explicitly chosen to '{hint}'. "
            "Focus the narrative on this action type immediately."
        )

    content = (
        f"{directives}\n\n"
        f"<WorldBackground>\n{background}\n</WorldBackground>\n\n"
        f"<Protagonist>\n{protagonist}\n</Protagonist>"
    )
    if summary and summary.strip():
        content += f"\n\n<CurrentStoryState_Summary>\n{summary}\n</CurrentStoryState_Summary>"

    content += (
        f"\n\nCRITICAL: Respond ONLY with the continuation of the story in {language}. "
        "Output the pure narrative text and immediately STOP. Do not break character."
    )
    return content


def summarize_prompt(new_text: str, existing_summary: str, language: str = DEFAULT_LANGUAGE) -> str:
    instructions = (
        "CRITICAL INSTRUCTION: Output the summary text DIRECTLY, without introductory or concluding remarks. "
        f"LANGUAGE AND FORMAT: Respond entirely in {language}. Do NOT use special characters such as '*', '#', or '\\'. "
        "CONTENT PRIORITY:\n"
        "1. PRESERVE RECENT ACTIONS: Capture the LATEST user input as the immediate situation.\n"
        "2. CORE FACTS: Retain character states, essential items, and key world-building details.\n"
        "3. COMPRESSION: Discard narrative transitions and filler."
    )
    if not (existing_summary or "").strip():
        return (
            f"{instructions}\n\n"
            "Please summarize the following story content. Ensure the protagonist's current situation "
            "and latest actions are clearly stated:\n\n"
            f"<Content>\n{new_text}\n</Content>"
        )
    return (
        f"{instructions}\n\n"
        "Please merge the new content into the existing summary.\n"
        "IMPORTANT: Update the current situation based on the latest developments in <NewContent>. "
        "The result must work as the complete context for the next turn.\n\n"
        f"<ExistingSummary>\n{existing_summary}\n</ExistingSummary>\n\n"
        f"<NewContent>\n{new_text}\n</NewContent>\n\n"
        "Provide a single, consolidated summary directly."
    )


def enhance_prompt(text: str, kind: str, language: str = DEFAULT_LANGUAGE) -> str:
    return (
        "You are an expert creative writing editor specializing in world-building and character design.\n"
        f"Enhance the following '{kind}' description. Make it more vivid and detailed while keeping "
        "the original core concepts.\n\n"
        "DIRECTIVES:\n"
        f"- Respond entirely in {language}, without markdown or special characters like '*', '#', or '\\'.\n"
        "- Expand with sensory details rather than abstract adjectives.\n"
        "- Match the tone implied by the input and avoid purple prose.\n"
        "- Output ONLY the enhanced text.\n\n"
        f"<{kind}>\n{text}\n</{kind}>"
    )


def suggestions_prompt(action_hint: Optional[str] = None, language: str = DEFAULT_LANGUAGE) -> str:
    prompt = (
        "Based on the current story state, provide exactly 3 distinct, short (1-2 sentences) options "
        "for the protagonist's next action.\n\nDIRECTIVES:\n"
    )
    hint = _concrete_hint(action_hint)
    if hint:
        prompt += f"- PRIORITY FOCUS: The user has chosen to '{hint}'. ALL suggestions MUST be of this type.\n"
    else:
        prompt += "- Variety: Cover different approaches (investigative, bold, cautious or dialogue-based).\n"
    prompt += (
        "- Tone: Keep the actions in-character and aligned with the world atmosphere.\n"
        f"- The options MUST be written in {language}.\n\n"
        "CRITICAL FORMATTING INSTRUCTION:\n"
        "Output ONLY a valid JSON array of strings, with no markdown fences and no surrounding text."
    )
    return prompt
