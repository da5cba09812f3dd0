"""Reply generation collaborator.

The workflow only depends on :class:`ReplyGenerator`; the OpenAI-backed
implementation is the production default.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

import openai
from openai import AsyncOpenAI

from ..config import Settings, get_settings
from ..integrations.google.errors import ErrorKind, IntegrationError

logger = logging.getLogger(__name__)

VALID_RISK_TAGS = (
    "wait_time",
    "service_quality",
    "rude_staff",
    "cleanliness",
    "price",
    "booking",
    "results",
    "communication",
    "other",
)
MAX_RISK_TAGS = 3

SYSTEM_PROMPT = """You help local business owners reply to online reviews in a warm, professional, concise tone.

Rules:
- Output MUST be valid JSON only (no extra text, no markdown).
- Keep the reply 2-4 sentences, max 80 words.
- Be human, specific, and polite.
- NEVER use "Dear" to start the reply.
- Never mention policies you cannot verify.
- Never promise refunds, discounts, or compensation.
- Never admit legal fault or wrongdoing.
- For negative reviews: apologize briefly, acknowledge the issue, invite offline resolution.
- Use the customer's first name naturally if provided; otherwise omit name.
- End with the business name if provided; otherwise omit sign-off.

Risk tags (use exact values only):
wait_time, service_quality, rude_staff, cleanliness, price, booking, results, communication, other

Risk tag rules:
- Choose 0-3 tags based ONLY on explicit issues mentioned in the review.
- If no clear issue (positive review), use empty array [].
- If negative but unclear category, use ["other"].

JSON schema:
{
  "reply": "string",
  "riskTags": ["string", ...]
}"""

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class ReplyPrompt:
    source: str
    rating: int
    review_text: str | None
    author_name: str | None = None
    business_name: str | None = None

    def render(self) -> str:
        first_name = (self.author_name or "").split(" ")[0]
        if first_name == "Anonymous":
            first_name = ""
        rating = f"{self.rating}/5" if self.rating else "N/A/5"
        return (
            f"Source: {self.source or 'unknown'}\n"
            f"Rating: {rating}\n"
            f"Customer name: {first_name or '(not provided)'}\n"
            f"Business name: {self.business_name or '(not provided)'}\n"
            f'Review: "{self.review_text or "(No text)"}"\n'
            "\n"
            "Write the JSON reply."
        )


@dataclass
class GeneratedReply:
    text: str
    risk_tags: list[str] = field(default_factory=list)


class ReplyGenerator(Protocol):
    async def generate(self, prompt: ReplyPrompt) -> str:
        """Return the raw model output for ``prompt``."""
        ...


def normalize_risk_tags(tags: object) -> list[str]:
    if not isinstance(tags, list):
        return []
    out: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag in VALID_RISK_TAGS and tag not in out:
            out.append(tag)
    return out[:MAX_RISK_TAGS]


def parse_generation(raw: str) -> GeneratedReply:
    """Parse model output; non-JSON output is taken as the reply text itself."""
    content = (raw or "").strip()
    m = _FENCE.match(content)
    if m:
        content = m.group(1).strip()
    try:
        data = json.loads(content)
    except ValueError:
        return GeneratedReply(text=content)
    if not isinstance(data, dict):
        return GeneratedReply(text=content)
    reply = data.get("reply")
    text = reply.strip() if isinstance(reply, str) else ""
    return GeneratedReply(text=text, risk_tags=normalize_risk_tags(data.get("riskTags")))


class OpenAIReplyGenerator:
    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.openai_api_key:
                raise IntegrationError(ErrorKind.CONFIGURATION_MISSING, "AI reply generation is not configured.")
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key, timeout=45.0, max_retries=2)
        return self._client

    async def generate(self, prompt: ReplyPrompt) -> str:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt.render()},
                ],
                temperature=0.7,
                max_tokens=300,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as exc:
            logger.warning("openai timeout", extra={"meta": {"error": str(exc)}})
            raise IntegrationError(ErrorKind.NETWORK_TIMEOUT, "AI is taking too long to respond. Please try again.")
        except openai.RateLimitError as exc:
            logger.warning("openai rate limited", extra={"meta": {"error": str(exc)}})
            raise IntegrationError(ErrorKind.RATE_LIMITED)
        except openai.APIError as exc:
            logger.error("openai error", extra={"meta": {"error": str(exc)}})
            raise IntegrationError(ErrorKind.PROVIDER_UNAVAILABLE, "AI service error. Please try again.")
        return resp.choices[0].message.content or ""
