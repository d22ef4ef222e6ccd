from typing import Optional

import openai
from openai import AsyncOpenAI
import structlog

from qa_orchestrator.config.settings import settings
from qa_orchestrator.core.exceptions import (
    ProviderRejection,
    RateLimitedFailure,
    RecoverableIoFailure,
)
from qa_orchestrator.repositories.interfaces.ai_client import IAIClient

logger = structlog.get_logger()


class OpenAIClient(IAIClient):
    """OpenAI-compatible chat completions client.

    SDK retries are disabled; retry and timeouts belong to the invocation
    gateway.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.client = client or AsyncOpenAI(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key or "not-configured",
            max_retries=0,
            timeout=settings.ai_call_timeout_s,
        )
        self.model = settings.openai_model

    async def complete(self, system_prompt: str, user_prompt: str, model: Optional[str] = None) -> str:
        model = model or self.model
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=settings.openai_temperature,
                max_tokens=settings.openai_max_tokens,
            )
        except openai.RateLimitError as e:
            retry_after = _retry_after(e)
            logger.warning("AI provider rate limited the request", model=model, retry_after_s=retry_after)
            raise RateLimitedFailure(str(e), retry_after_s=retry_after) from e
        except openai.APIConnectionError as e:
            # Also covers APITimeoutError
            raise RecoverableIoFailure(f"AI provider unreachable: {e}") from e
        except openai.InternalServerError as e:
            raise RecoverableIoFailure(f"AI provider error {e.status_code}: {e.message}") from e
        except openai.APIStatusError as e:
            raise ProviderRejection(f"AI provider rejected request: {e.message}", status_code=e.status_code) from e

        if not response.choices:
            raise ProviderRejection("AI provider returned no choices")
        content = response.choices[0].message.content or ""
        logger.info(
            "AI completion received",
            model=model,
            content_length=len(content),
            total_tokens=getattr(response.usage, "total_tokens", None),
        )
        return content


def _retry_after(error: "openai.RateLimitError") -> Optional[float]:
    header = error.response.headers.get("retry-after") if error.response is not None else None
    try:
        return float(header) if header else None
    except ValueError:
        return None
