from typing import Optional

import httpx
import structlog

from qa_orchestrator.config.settings import settings
from qa_orchestrator.core.exceptions import SpecFetchError
from qa_orchestrator.repositories.interfaces.spec_fetcher import ISpecFetcher

logger = structlog.get_logger()


class HttpSpecFetcher(ISpecFetcher):
    """Downloads OpenAPI documents over HTTP(S)"""

    def __init__(self, timeout_s: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_s = timeout_s or settings.spec_fetch_timeout_s
        self._transport = transport

    async def fetch(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_s, follow_redirects=True, transport=self._transport
            ) as client:
                response = await client.get(url, headers={"Accept": "application/json, application/yaml, */*"})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SpecFetchError(f"Spec source returned {e.response.status_code} for {url}") from e
        except httpx.HTTPError as e:
            raise SpecFetchError(f"Could not fetch spec from {url}: {e}") from e
        except (httpx.InvalidURL, ValueError) as e:
            raise SpecFetchError(f"Invalid spec URL {url!r}: {e}") from e

        content = response.text
        if not content.strip():
            raise SpecFetchError(f"Spec at {url} is empty")
        logger.info("Fetched spec", url=url, size=len(content))
        return content
