import json
from unittest.mock import MagicMock

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.errors import (
    BatchTooLargeError,
    NoCategoriesAvailableError,
    ProviderErrorKind,
    RequestValidationError,
)
from auto_categorizer.models import CategoryInput, Classification, TransactionInput
from auto_categorizer.providers.anthropic_llm import AnthropicProvider
from auto_categorizer.providers.base import parse_confidence
from auto_categorizer.providers.gemini_llm import GeminiProvider
from auto_categorizer.providers.openai_llm import OpenAIProvider
from auto_categorizer.providers.usage import UsageLedger
from conftest import FAMILY, openai_response

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/responses")
ANTHROPIC_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


@pytest.fixture
def config() -> CategorizerConfig:
    return CategorizerConfig(
        openai_api_key="sk-fake",
        anthropic_api_key="sk-ant-fake",
        gemini_api_key="gm-fake",
    )


@pytest.fixture
def usage() -> UsageLedger:
    return UsageLedger()


@pytest.fixture
def category_inputs() -> list[CategoryInput]:
    return [
        CategoryInput(id="cat-groceries", name="Groceries", classification=Classification.EXPENSE),
        CategoryInput(id="cat-dining", name="Dining", classification=Classification.EXPENSE),
    ]


def transaction_inputs(count: int) -> list[TransactionInput]:
    return [
        TransactionInput(
            id=f"t{i}",
            amount=10.0 + i,
            classification=Classification.EXPENSE,
            description=f"Merchant {i}",
        )
        for i in range(count)
    ]


def test_openai_categorize(config, usage, category_inputs):
    client = MagicMock()
    client.responses.create.return_value = openai_response(
        {
            "categorizations": [
                {"transaction_id": "t0", "category_name": "grocery", "confidence": 0.72},
                {"transaction_id": "t1", "category_name": "null", "confidence": 0},
            ]
        }
    )
    provider = OpenAIProvider(config, client=client, usage=usage)

    response = provider.auto_categorize(transaction_inputs(2), category_inputs, family_id=FAMILY)

    assert response.success
    results = response.unwrap()
    assert results[0].category_name == "Groceries"
    assert results[0].confidence == pytest.approx(0.72)
    assert results[1].category_name is None

    kwargs = client.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4.1-mini"
    assert kwargs["temperature"] == 0.0
    assert kwargs["text"]["format"]["type"] == "json_schema"
    assert "Return 1 result per transaction" in kwargs["instructions"]

    record = usage.records[0]
    assert record.provider == "openai"
    assert record.operation == "auto_categorize"
    assert (record.prompt_tokens, record.completion_tokens, record.total_tokens) == (120, 30, 150)
    assert record.estimated_cost is not None
    assert record.metadata == {"transaction_count": 2, "category_count": 2}


def test_openai_falls_back_to_plain_text_when_schema_rejected(config, category_inputs):
    client = MagicMock()
    rejected = openai.BadRequestError(
        "response_format json_schema not supported",
        response=httpx.Response(400, request=OPENAI_REQUEST),
        body=None,
    )
    client.responses.create.side_effect = [
        rejected,
        openai_response('Here:\n```json\n{"categorizations": [{"transaction_id": "t0", "category_name": "Dining"}]}\n```'),
        openai_response('{"categorizations": []}'),
    ]
    provider = OpenAIProvider(config, client=client)

    results = provider.auto_categorize(transaction_inputs(1), category_inputs).unwrap()

    assert results[0].category_name == "Dining"
    assert results[0].confidence is None
    assert "text" not in client.responses.create.call_args_list[1].kwargs
    assert not provider.structured_output

    provider.auto_categorize(transaction_inputs(1), category_inputs)
    assert client.responses.create.call_count == 3


def test_openai_unrelated_bad_request_keeps_structured_output(config, usage, category_inputs):
    client = MagicMock()
    client.responses.create.side_effect = openai.BadRequestError(
        "This model's maximum context length is 128000 tokens",
        response=httpx.Response(400, request=OPENAI_REQUEST),
        body=None,
    )
    provider = OpenAIProvider(config, client=client, usage=usage)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert not response.success
    assert response.error.kind == ProviderErrorKind.STATUS
    assert response.error.status_code == 400
    assert client.responses.create.call_count == 1
    assert provider.structured_output


@pytest.mark.parametrize(
    "raw, expected",
    [
        (0.8, 0.8),
        ("85", 0.85),
        ("85%", 0.85),
        (" 0.5 % ", 0.005),
        (150, 1.0),
        ("high", None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_parse_confidence(raw, expected):
    if expected is None:
        assert parse_confidence(raw) is None
    else:
        assert parse_confidence(raw) == pytest.approx(expected)


def test_results_for_unknown_or_duplicate_ids_are_dropped(config, category_inputs):
    client = MagicMock()
    client.responses.create.return_value = openai_response(
        [
            {"transaction_id": "t0", "category_name": "Dining", "confidence": "85"},
            {"transaction_id": "t0", "category_name": "Groceries"},
            {"transaction_id": "zzz", "category_name": "Groceries"},
        ]
    )
    provider = OpenAIProvider(config, client=client)

    results = provider.auto_categorize(transaction_inputs(1), category_inputs).unwrap()

    assert len(results) == 1
    assert results[0].category_name == "Dining"
    assert results[0].confidence == pytest.approx(0.85)


def test_batch_over_cap_raises_before_any_request(config, usage, category_inputs):
    client = MagicMock()
    provider = OpenAIProvider(config, client=client, usage=usage)

    with pytest.raises(BatchTooLargeError) as exc_info:
        provider.auto_categorize(transaction_inputs(30), category_inputs)

    assert isinstance(exc_info.value, RequestValidationError)
    assert exc_info.value.size == 30
    client.responses.create.assert_not_called()
    assert usage.records == []


def test_missing_categories_raises_before_any_request(config, usage):
    client = MagicMock()
    provider = AnthropicProvider(config, client=client, usage=usage)

    with pytest.raises(NoCategoriesAvailableError):
        provider.auto_categorize(transaction_inputs(1), [])

    client.messages.create.assert_not_called()
    assert usage.records == []


@pytest.mark.parametrize(
    "error, kind, status",
    [
        (openai.APITimeoutError(request=OPENAI_REQUEST), ProviderErrorKind.TIMEOUT, None),
        (openai.APIConnectionError(request=OPENAI_REQUEST), ProviderErrorKind.CONNECTION, None),
        (
            openai.RateLimitError("slow down", response=httpx.Response(429, request=OPENAI_REQUEST), body=None),
            ProviderErrorKind.RATE_LIMIT,
            429,
        ),
        (
            openai.AuthenticationError("bad key", response=httpx.Response(401, request=OPENAI_REQUEST), body=None),
            ProviderErrorKind.AUTHENTICATION,
            401,
        ),
        (
            openai.InternalServerError("boom", response=httpx.Response(500, request=OPENAI_REQUEST), body=None),
            ProviderErrorKind.STATUS,
            500,
        ),
        (RuntimeError("surprise"), ProviderErrorKind.UNEXPECTED, None),
    ],
)
def test_openai_error_mapping(config, usage, category_inputs, error, kind, status):
    client = MagicMock()
    client.responses.create.side_effect = error
    provider = OpenAIProvider(config, client=client, usage=usage)

    response = provider.auto_categorize(transaction_inputs(2), category_inputs, family_id=FAMILY)

    assert not response.success
    assert response.error.kind == kind
    assert response.error.provider == "openai"
    assert response.error.status_code == status
    with pytest.raises(type(response.error)):
        response.unwrap()

    record = usage.records[0]
    assert record.total_tokens == 0
    assert record.estimated_cost is None
    assert record.metadata["error"] == str(response.error)
    assert record.metadata["transaction_count"] == 2
    if status is not None:
        assert record.metadata["http_status_code"] == status


def test_unparseable_output_is_malformed_response(config, usage, category_inputs):
    client = MagicMock()
    client.responses.create.return_value = openai_response("I am not sure about these, sorry.")
    provider = OpenAIProvider(config, client=client, usage=usage)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert response.error.kind == ProviderErrorKind.MALFORMED_RESPONSE
    assert usage.records[0].total_tokens == 0


def anthropic_message(blocks: list, input_tokens: int = 200, output_tokens: int = 40) -> MagicMock:
    message = MagicMock()
    message.content = blocks
    message.usage.input_tokens = input_tokens
    message.usage.output_tokens = output_tokens
    return message


def test_anthropic_uses_forced_tool(config, usage, category_inputs):
    tool_block = MagicMock(type="tool_use")
    tool_block.input = {
        "categorizations": [{"transaction_id": "t0", "category_name": "Groceries", "confidence": 0.9}]
    }
    client = MagicMock()
    client.messages.create.return_value = anthropic_message([tool_block])
    provider = AnthropicProvider(config, client=client, usage=usage)

    results = provider.auto_categorize(transaction_inputs(1), category_inputs, family_id=FAMILY).unwrap()

    assert results[0].category_name == "Groceries"
    kwargs = client.messages.create.call_args.kwargs
    assert kwargs["model"] == "claude-sonnet-4-5-20250929"
    assert kwargs["tool_choice"] == {"type": "tool", "name": "categorize_transactions"}
    assert kwargs["tools"][0]["input_schema"]["properties"]["categorizations"]["items"]["properties"][
        "transaction_id"
    ]["enum"] == ["t0"]
    assert usage.records[0].provider == "anthropic"
    assert usage.records[0].total_tokens == 240


def test_anthropic_text_fallback(config, category_inputs):
    text_block = MagicMock(type="text")
    text_block.text = '<thinking>hmm</thinking>[{"transaction_id": "t0", "category_name": "dining"}]'
    client = MagicMock()
    client.messages.create.return_value = anthropic_message([text_block])
    provider = AnthropicProvider(config, client=client)

    results = provider.auto_categorize(transaction_inputs(1), category_inputs).unwrap()

    assert results[0].category_name == "Dining"


def test_anthropic_without_content_is_malformed(config, category_inputs):
    client = MagicMock()
    client.messages.create.return_value = anthropic_message([])
    provider = AnthropicProvider(config, client=client)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert response.error.kind == ProviderErrorKind.MALFORMED_RESPONSE


@pytest.mark.parametrize(
    "error, kind",
    [
        (anthropic.APITimeoutError(request=ANTHROPIC_REQUEST), ProviderErrorKind.TIMEOUT),
        (anthropic.APIConnectionError(request=ANTHROPIC_REQUEST), ProviderErrorKind.CONNECTION),
        (
            anthropic.RateLimitError("slow", response=httpx.Response(429, request=ANTHROPIC_REQUEST), body=None),
            ProviderErrorKind.RATE_LIMIT,
        ),
        (
            anthropic.PermissionDeniedError("no", response=httpx.Response(403, request=ANTHROPIC_REQUEST), body=None),
            ProviderErrorKind.AUTHENTICATION,
        ),
        (
            anthropic.InternalServerError("boom", response=httpx.Response(529, request=ANTHROPIC_REQUEST), body=None),
            ProviderErrorKind.STATUS,
        ),
    ],
)
def test_anthropic_error_mapping(config, category_inputs, error, kind):
    client = MagicMock()
    client.messages.create.side_effect = error
    provider = AnthropicProvider(config, client=client)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert response.error.kind == kind
    assert response.error.provider == "anthropic"


def test_gemini_categorize(config, usage, category_inputs):
    client = MagicMock()
    gemini_response = MagicMock()
    gemini_response.text = json.dumps(
        {"categorizations": [{"transaction_id": "t0", "category_name": "Groceries", "confidence": 0.6}]}
    )
    gemini_response.usage_metadata.prompt_token_count = 300
    gemini_response.usage_metadata.candidates_token_count = 20
    client.models.generate_content.return_value = gemini_response
    provider = GeminiProvider(config, client=client, usage=usage)

    results = provider.auto_categorize(transaction_inputs(1), category_inputs, family_id=FAMILY).unwrap()

    assert results[0].category_name == "Groceries"
    kwargs = client.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-2.0-flash"
    assert kwargs["config"].response_mime_type == "application/json"
    assert kwargs["config"].temperature == 0
    assert usage.records[0].provider == "gemini"
    assert usage.records[0].prompt_tokens == 300


@pytest.mark.parametrize(
    "error, kind, status",
    [
        (
            genai_errors.ClientError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}),
            ProviderErrorKind.RATE_LIMIT,
            429,
        ),
        (
            genai_errors.ClientError(401, {"error": {"code": 401, "message": "key", "status": "UNAUTHENTICATED"}}),
            ProviderErrorKind.AUTHENTICATION,
            401,
        ),
        (
            genai_errors.ServerError(503, {"error": {"code": 503, "message": "busy", "status": "UNAVAILABLE"}}),
            ProviderErrorKind.STATUS,
            503,
        ),
        (httpx.ReadTimeout("timed out"), ProviderErrorKind.TIMEOUT, None),
        (httpx.ConnectError("refused"), ProviderErrorKind.CONNECTION, None),
    ],
)
def test_gemini_error_mapping(config, usage, category_inputs, error, kind, status):
    client = MagicMock()
    client.models.generate_content.side_effect = error
    provider = GeminiProvider(config, client=client, usage=usage)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert response.error.kind == kind
    assert response.error.status_code == status
    assert usage.records[0].metadata["error"]


def test_empty_gemini_response_is_malformed(config, category_inputs):
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(text="")
    provider = GeminiProvider(config, client=client)

    response = provider.auto_categorize(transaction_inputs(1), category_inputs)

    assert response.error.kind == ProviderErrorKind.MALFORMED_RESPONSE
