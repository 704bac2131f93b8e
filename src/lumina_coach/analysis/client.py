"""LLM-based grammar and language evaluation of a single utterance."""

import structlog
from openai import AsyncOpenAI

from lumina_coach.analysis.prompts import ANALYSIS_RESPONSE_FORMAT, build_analysis_prompt
from lumina_coach.models.analysis import SpeechAnalysis, fallback_analysis

logger = structlog.get_logger()


class AnalysisClient:
    """Sends a transcript to the language model and parses the verdict.

    ``evaluate`` never raises: transport errors, timeouts and responses that
    do not match the schema all produce the fallback analysis.

    Args:
        api_key: OpenAI API key. ``None`` disables the remote call.
        model: Model to use for evaluation.
        temperature: Sampling temperature.
        timeout: Request timeout in seconds.
        persona_name: Coach persona used in the system instruction.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        timeout: float = 20.0,
        persona_name: str = "default",
    ):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout) if api_key else None
        self.model = model
        self.temperature = temperature
        self.system_prompt = build_analysis_prompt(persona_name)

    async def evaluate(self, transcript: str) -> SpeechAnalysis:
        """Evaluate one transcript.

        Args:
            transcript: Final text produced by speech capture.

        Returns:
            The parsed analysis, or the fallback analysis on any failure.
        """
        if not transcript or not transcript.strip():
            logger.info("analysis_skipped_empty_transcript")
            return fallback_analysis()

        if self.client is None:
            logger.warning("analysis_unavailable", reason="missing_api_key")
            return fallback_analysis()

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self.system_prompt},
                    {"role": "user", "content": transcript},
                ],
                temperature=self.temperature,
                response_format=ANALYSIS_RESPONSE_FORMAT,
            )

            content = response.choices[0].message.content
            if not content:
                raise ValueError("Empty analysis response")
            analysis = SpeechAnalysis.model_validate_json(content)
            logger.info("analysis_complete", status=analysis.status.value)
            return analysis

        except Exception:
            logger.exception("analysis_failed")
            return fallback_analysis()
