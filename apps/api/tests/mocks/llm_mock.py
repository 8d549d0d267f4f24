"""Mock LLM client for unit testing the oracle adapter.

Provides deterministic, controllable responses for testing oracle-dependent
code without making actual API calls.
"""

import json
from typing import Optional


class MockLLMClient:
    """Stand-in for services.llm.LLMClient.

    Responses are chosen by substring match against the prompt, falling back
    to a default. Every call is recorded for assertions.
    """

    def __init__(self):
        self._responses: dict[str, str] = {}
        self._default_response = "Mock LLM response"
        self._error: Optional[Exception] = None
        self._call_history: list[dict] = []

    def set_response(self, prompt_pattern: str, response: str):
        """Set response for prompts containing the pattern."""
        self._responses[prompt_pattern.lower()] = response

    def set_json_response(self, prompt_pattern: str, data: dict):
        """Set JSON response for prompts containing the pattern."""
        self._responses[prompt_pattern.lower()] = json.dumps(data)

    def set_error(self, error: Exception):
        """Raise error from every subsequent generate() call."""
        self._error = error

    async def generate(
        self,
        prompt: str,
        system_prompt: str = "",
        temperature: float = 0.6,
        max_tokens: int = 4096,
        max_retries: Optional[int] = None,
        validate_size: bool = True,
        user_id: Optional[str] = None,
    ) -> str:
        """Generate a mock response."""
        self._call_history.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "user_id": user_id,
            }
        )

        if self._error is not None:
            raise self._error

        prompt_lower = prompt.lower()
        for pattern, response in self._responses.items():
            if pattern in prompt_lower:
                return response

        return self._default_response

    def get_call_count(self) -> int:
        """Get number of generate calls."""
        return len(self._call_history)

    def get_last_call(self) -> Optional[dict]:
        """Get the most recent call arguments."""
        return self._call_history[-1] if self._call_history else None
