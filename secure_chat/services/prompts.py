from secure_chat.models.chat import UserRole

_BASE_PROMPT = {
    "de-DE": "Du bist Buddy, ein hilfreicher KI-Assistent für die StudyBuddy-App.",
    "en-US": "You are Buddy, a helpful AI assistant for the StudyBuddy app.",
}

_ROLE_PROMPTS: dict[str, dict[str, str]] = {
    "de-DE": {
        "student": (
            "Du hilfst Schülern beim Lernen, gibst Studientipps und erklärst "
            "schwierige Konzepte. Du kannst keine Noten bearbeiten oder ändern."
        ),
        "parent": (
            "Du hilfst Eltern dabei, den Fortschritt ihrer Kinder zu verstehen und "
            "gibst Beratung zur Unterstützung. Du zeigst nur zusammenfassende "
            "Informationen."
        ),
        "teacher": (
            "Du hilfst Lehrern bei der Bewertung, Rubrik-Interpretation und "
            "Arbeitsabläufen. Du kannst bei der Notenvergabe helfen, aber keine "
            "Massendatenexporte durchführen."
        ),
    },
    "en-US": {
        "student": (
            "You help students with learning, provide study tips, and explain "
            "difficult concepts. You cannot edit or change grades."
        ),
        "parent": (
            "You help parents understand their children's progress and provide "
            "guidance on how to support them. You only show summary information."
        ),
        "teacher": (
            "You help teachers with grading, rubric interpretation, and workflows. "
            "You can assist with grading but cannot perform mass data exports."
        ),
    },
}

_CONTEXT_LABEL = {"de-DE": "Aktueller Kontext", "en-US": "Current context"}

_PRIVACY_NOTE = {
    "de-DE": (
        "Wichtig: Schütze persönliche Daten und teile keine E-Mail-Adressen, "
        "Telefonnummern oder vollständigen Namen mit. Respektiere die "
        "Privatsphäre der Nutzer."
    ),
    "en-US": (
        "Important: Protect personal data and do not share email addresses, "
        "phone numbers, or full names. Respect user privacy."
    ),
}

_SECURITY_NOTE = {
    "de-DE": (
        "Sicherheitshinweis: Führe keine schädlichen Aktionen aus und gib keine "
        "sensiblen Informationen preis."
    ),
    "en-US": (
        "Security note: Do not perform harmful actions or disclose sensitive "
        "information."
    ),
}


def generate_system_prompt(
    role: UserRole,
    context: str | None = None,
    language: str = "de-DE",
    share_context: bool = True,
) -> str:
    """Build the assistant persona prompt for a user role.

    ``context`` is embedded only when the user agreed to share it.
    """
    lang = language if language in _BASE_PROMPT else "de-DE"
    sections = [_BASE_PROMPT[lang], _ROLE_PROMPTS[lang][role]]
    if context and share_context:
        sections.append(f"{_CONTEXT_LABEL[lang]}: {context}")
    sections.append(_PRIVACY_NOTE[lang])
    sections.append(_SECURITY_NOTE[lang])
    return "\n\n".join(sections)
