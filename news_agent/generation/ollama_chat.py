"""
Ollama Chat Service

Text generation through a local Ollama chat model, with both a blocking call
and an incremental token stream.
"""

import logging
from typing import Callable, Iterator, Optional

from langchain_ollama import ChatOllama

from ..errors import GenerationError

logger = logging.getLogger(__name__)


def _message_text(message) -> str:
    """Extract text content from a LangChain message or chunk."""
    content = getattr(message, 'content', message)
    if isinstance(content, list):
        # Multi-part content: keep the text parts only
        return ''.join(
            part.get('text', '') if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content) if content is not None else ''


class OllamaChatService:
    """
    Generation capability backed by langchain-ollama's ChatOllama.

    Accepts plain-text prompts only. All failures surface as GenerationError.
    """

    def __init__(
        self,
        model: str = "llama3.1:latest",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        llm: Optional[ChatOllama] = None
    ):
        """
        Initialize the chat service.

        Args:
            model: Ollama model name for answer generation
            base_url: Base URL for Ollama service
            temperature: LLM temperature (higher = more creative)
            max_tokens: Maximum tokens in a generated answer
            llm: Preconfigured chat model (overrides the other settings)
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.llm = llm or ChatOllama(
            model=model,
            temperature=temperature,
            base_url=base_url,
            num_predict=max_tokens
        )

    def invoke(self, prompt: str) -> str:
        """
        Generate a complete response for a prompt.

        Raises:
            GenerationError: If the model call fails
        """
        try:
            response = self.llm.invoke(prompt)
        except Exception as e:
            raise GenerationError(f"Error generating answer with LLM: {e}") from e

        return _message_text(response)

    def stream(self, prompt: str) -> Iterator[str]:
        """
        Yield response fragments as the model produces them.

        Closing the returned generator closes the upstream stream.

        Raises:
            GenerationError: If the model call fails mid-stream
        """
        upstream = None
        try:
            upstream = self.llm.stream(prompt)
            for chunk in upstream:
                token = _message_text(chunk)
                if token:
                    yield token
        except GeneratorExit:
            logger.debug("Token stream closed by consumer")
            raise
        except Exception as e:
            raise GenerationError(f"Error streaming answer from LLM: {e}") from e
        finally:
            close = getattr(upstream, 'close', None)
            if close is not None:
                close()

    def invoke_streaming(
        self,
        prompt: str,
        on_token: Callable[[str], None]
    ) -> str:
        """
        Generate a response, calling on_token for every fragment.

        Returns:
            The full response text (concatenation of all fragments)
        """
        parts = []
        for token in self.stream(prompt):
            parts.append(token)
            on_token(token)
        return ''.join(parts)
