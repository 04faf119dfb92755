"""
Tests for the Ollama chat generation service.

A mocked chat model stands in for ChatOllama.
"""

from unittest.mock import Mock

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk

from news_agent.errors import GenerationError
from news_agent.generation.ollama_chat import OllamaChatService


def service_with(llm) -> OllamaChatService:
    return OllamaChatService(llm=llm)


class TestInvoke:
    """Test blocking generation."""

    def test_returns_message_content(self):
        llm = Mock()
        llm.invoke.return_value = AIMessage(content="The answer.")

        assert service_with(llm).invoke("prompt") == "The answer."
        llm.invoke.assert_called_once_with("prompt")

    def test_multipart_content(self):
        llm = Mock()
        llm.invoke.return_value = AIMessage(content=[{'type': 'text', 'text': 'Part one. '}, 'Part two.'])

        assert service_with(llm).invoke("prompt") == "Part one. Part two."

    def test_failure_raises_generation_error(self):
        llm = Mock()
        llm.invoke.side_effect = ConnectionError("ollama down")

        with pytest.raises(GenerationError):
            service_with(llm).invoke("prompt")

    def test_default_model_configuration(self):
        service = OllamaChatService()
        assert service.model == "llama3.1:latest"
        assert service.llm.model == "llama3.1:latest"
        assert service.llm.num_predict == 1000


class TestStream:
    """Test token streaming."""

    def test_yields_tokens_in_order(self):
        llm = Mock()
        llm.stream.return_value = iter([AIMessageChunk(content=t) for t in ["Hel", "lo", "", "!"]])

        assert list(service_with(llm).stream("prompt")) == ["Hel", "lo", "!"]

    def test_invoke_streaming_returns_concatenation(self):
        llm = Mock()
        llm.stream.return_value = iter([AIMessageChunk(content=t) for t in ["a", "b", "c"]])
        seen = []

        result = service_with(llm).invoke_streaming("prompt", seen.append)

        assert seen == ["a", "b", "c"]
        assert result == "abc"

    def test_mid_stream_failure(self):
        def chunks():
            yield AIMessageChunk(content="partial")
            raise ConnectionError("dropped")

        llm = Mock()
        llm.stream.return_value = chunks()
        stream = service_with(llm).stream("prompt")

        assert next(stream) == "partial"
        with pytest.raises(GenerationError):
            next(stream)

    def test_closing_stream_closes_upstream(self):
        closed = []

        def chunks():
            try:
                for t in ["a", "b", "c"]:
                    yield AIMessageChunk(content=t)
            finally:
                closed.append(True)

        llm = Mock()
        llm.stream.return_value = chunks()
        stream = service_with(llm).stream("prompt")

        assert next(stream) == "a"
        stream.close()

        assert closed == [True]
