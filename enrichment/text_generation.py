"""OpenAI-backed quote generation, inbox summarization and priority classification."""

from openai import AsyncOpenAI, OpenAIError

from config import Settings, configure_logging
from enrichment.base import CollaboratorError, InvalidResponseError, parse_priority
from processor.classification import classify_environment
from processor.schemas import MailMessage, Priority

QUOTE_SYSTEM = "You are a poetic assistant that creates short literary quotes about indoor environments."
SUMMARY_SYSTEM = "You are a concise assistant that summarizes email content into minimal text for small displays."
PRIORITY_SYSTEM = "You analyze data and determine priority levels without explanation."

PRIORITY_RULES = """Rules:
- "normal": No urgent emails and comfortable environment (18-26°C, 30-65% humidity)
- "warning": Potentially important emails OR environment outside comfort zone
- "urgent": Critical emails OR extreme environmental conditions (<10°C, >35°C, <20% or >85% humidity)

Return just one word: normal, warning, or urgent"""


def _format_messages(messages: list[MailMessage]) -> str:
    return "\n\n".join(
        f"Email {i}: Subject: {m.subject}\nExcerpt: {m.snippet}" for i, m in enumerate(messages, 1)
    )


class OpenAITextGenerator:
    """
    Chat-completions client for the three text tasks. No retries: every
    failure surfaces as CollaboratorError and the orchestrator falls back.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_chars: int = 120,
        timeout: float = 20.0,
        client: AsyncOpenAI | None = None,
        log_level: str | None = None,
    ):
        self.model = model
        self.max_chars = max_chars
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.log = configure_logging("text-generator", log_level)

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAITextGenerator":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            max_chars=settings.quote_max_chars,
            timeout=settings.openai_timeout_sec,
            log_level=settings.log_level,
        )

    async def _complete(self, task: str, system: str, prompt: str, temperature: float, max_tokens: int) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            self.log.error("openai_request_failed", task=task, error=str(e))
            raise CollaboratorError(f"{task} request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise InvalidResponseError(f"{task} returned an empty completion")
        return content.strip()

    async def generate_quote(self, values: dict[str, float]) -> str:
        temperature = values.get("temperature")
        humidity = values.get("humidity")
        condition = classify_environment(values)
        prompt = (
            f"Generate a short, poetic, literature-style motivational quote (maximum {self.max_chars} characters) "
            f"about being in a {condition} indoor environment with temperature {temperature}°C and "
            f"humidity {humidity}%. The quote should be uplifting and suitable for display on a smart home device."
        )
        self.log.debug("quote_prompt", prompt=prompt)
        quote = await self._complete("quote", QUOTE_SYSTEM, prompt, temperature=0.7, max_tokens=60)
        quote = quote.strip('"')
        self.log.info("quote_generated", chars=len(quote))
        return quote

    async def summarize_messages(self, messages: list[MailMessage]) -> str:
        if not messages:
            raise InvalidResponseError("nothing to summarize")
        prompt = (
            f"Summarize these {len(messages)} unread emails very concisely in {self.max_chars} characters or less, "
            f"highlighting only the most important information that needs attention:\n\n{_format_messages(messages)}"
        )
        summary = await self._complete("summary", SUMMARY_SYSTEM, prompt, temperature=0.3, max_tokens=60)
        self.log.info("email_summary_generated", chars=len(summary))
        return summary

    async def classify_priority(self, values: dict[str, float], messages: list[MailMessage]) -> Priority:
        email_info = _format_messages(messages) if messages else "No unread emails."
        prompt = (
            'Given these sensor readings and emails, determine if the overall situation is "normal", "warning", or "urgent".\n\n'
            f"Temperature: {values.get('temperature')}°C\n"
            f"Humidity: {values.get('humidity')}%\n\n"
            f"Email information:\n{email_info}\n\n{PRIORITY_RULES}"
        )
        answer = await self._complete("priority", PRIORITY_SYSTEM, prompt, temperature=0.1, max_tokens=10)
        priority = parse_priority(answer)
        self.log.info("priority_determined", priority=priority.value)
        return priority
