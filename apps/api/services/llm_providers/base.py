"""Provider interface for the chat models behind the oracle."""

from abc import ABC, abstractmethod


class BaseLLMProvider(ABC):
    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @abstractmethod
    async def generate(
        self,
        messages: list[dict],
        temperature: float = 0.6,
        max_tokens: int = 4096,
    ) -> tuple[str, dict]:
        """Send chat messages and return (text, usage).

        usage holds prompt_tokens, completion_tokens and total_tokens when
        the endpoint reports them, and is empty otherwise.
        """
        ...
