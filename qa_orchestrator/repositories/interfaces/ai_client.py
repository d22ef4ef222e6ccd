from abc import ABC, abstractmethod
from typing import Optional


class IAIClient(ABC):
    """Interface for a chat-completion style AI provider.

    Implementations translate provider errors into RecoverableIoFailure,
    ProviderRejection or RateLimitedFailure.
    """

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str, model: Optional[str] = None) -> str:
        """Return the raw text of the first completion choice"""
        pass
