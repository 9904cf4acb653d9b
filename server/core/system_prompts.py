from shared.models.profile import ProfileSettings


RESPONSE_LENGTH_GUIDELINES = {
    "concise": "- Keep responses short and to the point",
    "detailed": "- Provide thorough explanations when helpful",
    "balanced": "- Balance brevity with completeness",
}


def build_context(contents: list[str]) -> str:
    """Numbered context block: ``[1] first chunk`` and so on, separated by blank lines."""
    return "\n\n".join(f"[{i}] {content}" for i, content in enumerate(contents, start=1))


def get_main_system_prompt(context: str, settings: ProfileSettings) -> str:
    """Render the assistant's system prompt from the persona fields of a profile.

    Args:
        context (str): The numbered context block of retrieved chunks.
        settings (ProfileSettings): Profile whose persona fields drive the prompt.

    Returns:
        str: The system prompt.
    """
    intro = f"You are {settings.assistant_name}"
    if settings.company_name:
        intro += f" from {settings.company_name}"
    if settings.domain:
        intro += f", specializing in {settings.domain}"

    guidelines = [
        "- Answer based strictly on the information above. Never invent or assume facts",
        "- Sound conversational and human. Vary your phrasing naturally",
        "- When you lack information, be honest but natural. Mix it up: \"I'm not sure about that\", "
        "\"That's outside what I know\", \"I don't have details on that one\"",
        "- Never mention \"context\", \"provided information\", or reveal you're reading from a source",
    ]
    if settings.enable_citations:
        guidelines.append("- Cite sources using [number] notation when referencing specific information")
    guidelines.append(RESPONSE_LENGTH_GUIDELINES.get(settings.response_length, RESPONSE_LENGTH_GUIDELINES["balanced"]))
    guidelines.extend(f"- {instruction}" for instruction in settings.custom_instructions)

    return (
        f"{intro}. You speak naturally like a real person, not a robot.\n\n"
        f"{context}\n\n"
        f"Tone: {settings.tone}\n"
        f"Response style: {settings.response_length}\n"
        f"Language: {settings.language}\n\n"
        "Guidelines:\n" + "\n".join(guidelines)
    ).strip()


def resolve_system_prompt(context: str, settings: ProfileSettings) -> str:
    """The profile's own system prompt if it has one, with the context appended; else the template."""
    if settings.system_prompt:
        return f"{settings.system_prompt.strip()}\n\n{context}".strip()
    return get_main_system_prompt(context, settings)
