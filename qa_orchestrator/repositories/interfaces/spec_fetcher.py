from abc import ABC, abstractmethod


class ISpecFetcher(ABC):
    """Interface for retrieving OpenAPI specs"""

    @abstractmethod
    async def fetch(self, url: str) -> str:
        """Return the raw spec document, raising SpecFetchError on failure"""
        pass
