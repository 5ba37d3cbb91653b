import pytest
from unittest.mock import MagicMock, patch
from typing import List

from chainaudit.domain.models.ai import ChatMessage, StructuredAIResponse
from chainaudit.domain.models.common import MessageRole
from chainaudit.infrastructure.ai.groq.groq_client import GroqClient
from chainaudit.infrastructure.ai.openai.gpt_client import GptClient

# Fixture to provide a mock completion shaped like the SDK's response
@pytest.fixture
def mock_completion():
    mock_usage = MagicMock()
    mock_usage.prompt_tokens = 10
    mock_usage.completion_tokens = 20
    mock_usage.total_tokens = 30

    mock_choice = MagicMock()
    mock_choice.message.content = '{"vulnerabilities": []}'
    completion = MagicMock()
    completion.choices = [mock_choice]
    completion.usage = mock_usage
    completion.model = "z-ai/glm-4.5-air:free"
    return completion

@pytest.fixture
def messages() -> List[ChatMessage]:
    return [
        {'role': MessageRole('system'), 'content': 'You audit smart contracts.'},
        {'role': MessageRole('user'), 'content': 'Contract Name: Vault.sol'},
    ]

@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
def test_gpt_client_init_success(mock_openai_constructor):
    """Test successful initialization with API key."""
    client = GptClient(api_key="test_key", timeout=30.0)
    mock_openai_constructor.assert_called_once_with(
        api_key="test_key", base_url=GptClient.DEFAULT_BASE_URL, timeout=30.0
    )
    assert client.model == GptClient.DEFAULT_MODEL

@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
def test_gpt_client_init_no_key(mock_openai_constructor):
    """Test initialization failure when no API key is found."""
    with pytest.raises(ValueError, match="OpenRouter API key not provided"):
        GptClient(api_key=None)
    mock_openai_constructor.assert_not_called()

@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
def test_gpt_client_init_failure(mock_openai_constructor):
    mock_openai_constructor.side_effect = Exception("bad proxy")
    with pytest.raises(RuntimeError, match="bad proxy"):
        GptClient(api_key="test_key")

@pytest.mark.asyncio
@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
async def test_send_messages_success(mock_openai_constructor, mock_completion, messages):
    """Test sending messages to a specific model."""
    mock_openai_constructor.return_value.chat.completions.create.return_value = mock_completion
    client = GptClient(api_key="test_key")

    response = await client.send_messages(messages, model="moonshotai/kimi-k2:free", max_tokens=4000, temperature=0.1)

    assert isinstance(response, StructuredAIResponse)
    assert response.content == '{"vulnerabilities": []}'
    assert response.token_usage == {'prompt_tokens': 10, 'completion_tokens': 20, 'total_tokens': 30}
    assert response.model_name == "z-ai/glm-4.5-air:free"
    assert response.latency_ms is not None

    call_kwargs = mock_openai_constructor.return_value.chat.completions.create.call_args.kwargs
    assert call_kwargs == {
        'model': "moonshotai/kimi-k2:free",
        'messages': messages,
        'max_tokens': 4000,
        'temperature': 0.1,
    }

@pytest.mark.asyncio
@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
async def test_send_messages_defaults_model_name(mock_openai_constructor, mock_completion, messages):
    mock_completion.model = None
    mock_completion.usage = None
    mock_openai_constructor.return_value.chat.completions.create.return_value = mock_completion
    client = GptClient(api_key="test_key", model="z-ai/glm-4.5-air:free")

    response = await client.send_messages(messages)

    assert response.model_name == "z-ai/glm-4.5-air:free"
    assert response.token_usage is None
    call_kwargs = mock_openai_constructor.return_value.chat.completions.create.call_args.kwargs
    assert 'max_tokens' not in call_kwargs

@pytest.mark.asyncio
@patch('chainaudit.infrastructure.ai.openai.gpt_client.OpenAI')
async def test_send_messages_invalid_structure(mock_openai_constructor, mock_completion, messages):
    mock_completion.choices = []
    mock_openai_constructor.return_value.chat.completions.create.return_value = mock_completion
    client = GptClient(api_key="test_key")

    with pytest.raises(ValueError, match="Invalid response structure"):
        await client.send_messages(messages)

@patch('chainaudit.infrastructure.ai.groq.groq_client.GroqSDKClient')
def test_groq_client_init_no_key(mock_groq_constructor):
    with pytest.raises(ValueError, match="Groq API key not provided"):
        GroqClient()
    mock_groq_constructor.assert_not_called()

@pytest.mark.asyncio
@patch('chainaudit.infrastructure.ai.groq.groq_client.GroqSDKClient')
async def test_groq_send_messages(mock_groq_constructor, mock_completion, messages):
    mock_completion.model = "llama-3.3-70b-versatile"
    mock_groq_constructor.return_value.chat.completions.create.return_value = mock_completion
    client = GroqClient(api_key="gsk_test")

    response = await client.send_messages(messages)

    assert response.content == '{"vulnerabilities": []}'
    assert response.model_name == "llama-3.3-70b-versatile"
    call_kwargs = mock_groq_constructor.return_value.chat.completions.create.call_args.kwargs
    assert call_kwargs['model'] == GroqClient.DEFAULT_MODEL
