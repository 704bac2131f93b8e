"""System instruction and response schema for utterance analysis."""

from lumina_coach.config import load_persona

_DEFAULT_PERSONA = {
    "name": "Lumina",
    "description": "a friendly and premium English speaking coach",
}


def build_analysis_prompt(persona_name: str = "default") -> str:
    """Build the grading instruction for the configured coach persona."""
    try:
        persona = {**_DEFAULT_PERSONA, **load_persona(persona_name)}
    except FileNotFoundError:
        persona = _DEFAULT_PERSONA

    return f"""\
You are {persona['name']}, {persona['description']}.
Evaluate the following user transcription.

CRITICAL RULES:
1. Detect the language. If the user speaks in Bengali (even partially), status must be \
'wrong_language'.
2. If the user speaks in English, check for grammar, pronunciation hints (from text context), \
and natural phrasing.
3. If it is perfect English, status is 'correct'.
4. If there are any mistakes, status is 'mistake'. Provide the corrected sentence and a short \
friendly feedback.
5. Always provide a short, conversational reply to what the user said to keep the \
conversation going.

Response must be in JSON format.
"""


# Property order is part of the contract: status, correction, feedback, reply
ANALYSIS_RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "speech_analysis",
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["correct", "mistake", "wrong_language"],
                    "description": "Status: 'correct', 'mistake', or 'wrong_language'",
                },
                "correction": {
                    "type": "string",
                    "description": "The full corrected sentence if it was a mistake",
                },
                "feedback": {
                    "type": "string",
                    "description": (
                        "Short feedback explaining why it was a mistake "
                        "or encouraging the user"
                    ),
                },
                "reply": {
                    "type": "string",
                    "description": "A short conversational reply from the coach",
                },
            },
            "required": ["status", "correction", "feedback", "reply"],
            "additionalProperties": False,
        },
    },
}
