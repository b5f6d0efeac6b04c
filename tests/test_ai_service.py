from unittest.mock import MagicMock, Mock, patch

import pytest

from wendi_api.services import ai_service
from wendi_api.services.ai_service import MAX_CONTEXT_CHARS, LLMTextGenerator, get_text_generator
from wendi_api.services.llm import OpenAIError, OpenAIProvider
from wendi_api.services.llm.base import LLMResponse


class TestLLMTextGenerator:
    def test_builds_system_and_user_messages(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="We open at 9.", model="gpt-4o-mini")

        result = LLMTextGenerator(provider).generate("Tell them we are closed", "are you open?")

        assert result == "We open at 9."
        messages = provider.generate.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert "Tell them we are closed" in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": "are you open?"}
        assert provider.generate.call_args.kwargs["timeout_seconds"] == 20.0

    def test_reply_is_stripped(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="  Hello  \n", model="m")
        assert LLMTextGenerator(provider).generate("prompt", "hi") == "Hello"

    def test_context_is_truncated(self):
        provider = Mock()
        provider.generate.return_value = LLMResponse(content="ok", model="m")

        LLMTextGenerator(provider).generate("prompt", "x" * (MAX_CONTEXT_CHARS + 50))

        assert len(provider.generate.call_args.args[0][1]["content"]) == MAX_CONTEXT_CHARS

    def test_provider_errors_propagate(self):
        provider = Mock()
        provider.generate.side_effect = OpenAIError(500, "server error")

        with pytest.raises(OpenAIError):
            LLMTextGenerator(provider).generate("prompt", "hi")


class TestGetTextGenerator:
    def test_none_without_api_key(self, monkeypatch):
        monkeypatch.setattr(ai_service, "_llm_provider", None)
        monkeypatch.setattr(ai_service.settings, "openai_api_key", "")
        assert get_text_generator() is None

    def test_generator_with_api_key(self, monkeypatch):
        monkeypatch.setattr(ai_service, "_llm_provider", None)
        monkeypatch.setattr(ai_service.settings, "openai_api_key", "sk-test")

        generator = get_text_generator()

        assert isinstance(generator, LLMTextGenerator)
        assert generator.provider.api_key == "sk-test"


class TestOpenAIProvider:
    def _client(self, response):
        client = MagicMock()
        client.post.return_value = response
        client_cls = MagicMock()
        client_cls.return_value.__enter__.return_value = client
        return client_cls, client

    def test_generate(self):
        response = Mock(status_code=200)
        response.json.return_value = {
            "model": "gpt-4o-mini",
            "choices": [{"message": {"content": "Hello!"}}],
            "usage": {"total_tokens": 12},
        }
        client_cls, client = self._client(response)

        with patch("wendi_api.services.llm.openai_provider.httpx.Client", client_cls):
            result = OpenAIProvider(api_key="sk-test").generate([{"role": "user", "content": "hi"}], max_tokens=50)

        assert result.content == "Hello!"
        assert result.usage == {"total_tokens": 12}
        assert client.post.call_args.args[0] == "https://api.openai.com/v1/chat/completions"
        assert client.post.call_args.kwargs["json"]["max_completion_tokens"] == 50

    def test_error_status_raises(self):
        response = Mock(status_code=429, text="rate limited")
        client_cls, _ = self._client(response)

        with patch("wendi_api.services.llm.openai_provider.httpx.Client", client_cls):
            with pytest.raises(OpenAIError) as exc_info:
                OpenAIProvider(api_key="sk-test").generate([])

        assert exc_info.value.status_code == 429

    def test_empty_choices(self):
        response = Mock(status_code=200)
        response.json.return_value = {"choices": []}
        client_cls, _ = self._client(response)

        with patch("wendi_api.services.llm.openai_provider.httpx.Client", client_cls):
            result = OpenAIProvider(api_key="sk-test", default_model="gpt-4o").generate([])

        assert result.content == ""
        assert result.model == "gpt-4o"
