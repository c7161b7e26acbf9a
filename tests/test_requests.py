"""
Unit tests for normalized requests, validation and prompt building.
"""

import math

import pytest

from content_flow.core.errors import InvalidParameter
from content_flow.core.prompts import (
    GENERATION_SYSTEM_PROMPT,
    IMPROVEMENT_INSTRUCTIONS,
    IMPROVEMENT_SYSTEM_PROMPT,
    ImprovementType,
    build_messages,
)
from content_flow.core.requests import (
    GenerationParameters,
    NormalizedRequest,
    Operation,
    ProviderResult,
    content_metadata,
    validate_request,
)
from content_flow.core.token_counter import TokenUsage


class TestNormalizedRequest:
    """Test request construction helpers."""

    def test_generate_constructor(self):
        request = NormalizedRequest.generate(
            "An intro about gardening", temperature=0.7, max_tokens=500, tone="warm"
        )

        assert request.operation == Operation.GENERATE
        assert request.prompt_or_content == "An intro about gardening"
        assert request.parameters.temperature == 0.7
        assert request.parameters.max_tokens == 500
        assert dict(request.parameters.extra) == {"tone": "warm"}
        assert request.provider_hint is None

    def test_improve_constructor_records_type(self):
        request = NormalizedRequest.improve("Some text", improvement_type="seo", provider_hint="backup")

        assert request.operation == Operation.IMPROVE
        assert request.parameters.extra["improvement_type"] == "seo"
        assert request.provider_hint == "backup"

    def test_parameters_to_dict(self):
        params = GenerationParameters(temperature=0.2, max_tokens=50, model="gpt-4", extra={"a": 1})

        assert params.to_dict() == {
            "temperature": 0.2,
            "max_tokens": 50,
            "model": "gpt-4",
            "extra": {"a": 1},
        }

    def test_extra_is_read_only(self):
        request = NormalizedRequest.generate("Hi", tone="warm")

        with pytest.raises(TypeError):
            request.parameters.extra["tone"] = "cold"

        assert request.parameters.extra["tone"] == "warm"

    def test_extra_is_copied_from_caller(self):
        options = {"tone": "warm", "audience": {"age": "kids"}}
        params = GenerationParameters(extra=options)

        options["tone"] = "cold"
        options["audience"]["age"] = "adults"

        assert params.to_dict()["extra"] == {"tone": "warm", "audience": {"age": "kids"}}

    def test_integer_temperature_serializes_as_float(self):
        assert GenerationParameters(temperature=1).to_dict()["temperature"] == 1.0
        assert isinstance(GenerationParameters(temperature=1).to_dict()["temperature"], float)


class TestValidateRequest:
    """Test the limits shared by every provider."""

    def test_valid_request_passes(self):
        validate_request(NormalizedRequest.generate("Hello", temperature=0.0, max_tokens=1))
        validate_request(NormalizedRequest.generate("Hello", temperature=2.0, max_tokens=4000))

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_text_rejected(self, text):
        with pytest.raises(InvalidParameter, match="cannot be empty"):
            validate_request(NormalizedRequest.generate(text))

    @pytest.mark.parametrize("temperature", [-0.1, 2.01, math.nan])
    def test_temperature_out_of_range(self, temperature):
        with pytest.raises(InvalidParameter, match="temperature"):
            validate_request(NormalizedRequest.generate("Hi", temperature=temperature))

    def test_boolean_temperature_rejected(self):
        with pytest.raises(InvalidParameter, match="temperature must be a number"):
            validate_request(NormalizedRequest.generate("Hi", temperature=True))

    @pytest.mark.parametrize("max_tokens", [0, 4001, -5])
    def test_max_tokens_out_of_range(self, max_tokens):
        with pytest.raises(InvalidParameter, match="max_tokens must be between 1 and 4000"):
            validate_request(NormalizedRequest.generate("Hi", max_tokens=max_tokens))

    def test_non_integer_max_tokens_rejected(self):
        with pytest.raises(InvalidParameter, match="max_tokens must be an integer"):
            validate_request(NormalizedRequest.generate("Hi", max_tokens=10.5))

    def test_invalid_parameter_is_value_error(self):
        with pytest.raises(ValueError):
            validate_request(NormalizedRequest.generate(""))


class TestProviderResult:
    """Test the cache serialization path of results."""

    def test_dict_round_trip(self):
        result = ProviderResult(
            content="Text",
            token_usage=TokenUsage(3, 4),
            model="gpt-4",
            provider_id="openai",
            raw_metadata={"word_count": 1},
        )

        assert ProviderResult.from_dict(result.to_dict()) == result

    def test_content_metadata(self):
        assert content_metadata("word " * 450) == {"word_count": 450, "estimated_reading_time": 3}
        assert content_metadata("") == {"word_count": 0, "estimated_reading_time": 0}


class TestBuildMessages:
    """Test prompt construction."""

    def test_generate_messages(self):
        messages = build_messages(NormalizedRequest.generate("Write a haiku"))

        assert messages == [
            {"role": "system", "content": GENERATION_SYSTEM_PROMPT},
            {"role": "user", "content": "Write a haiku"},
        ]

    def test_improve_messages_use_instruction(self):
        messages = build_messages(NormalizedRequest.improve("Draft text", improvement_type="clarity"))

        assert messages[0]["content"] == IMPROVEMENT_SYSTEM_PROMPT
        assert messages[1]["content"] == IMPROVEMENT_INSTRUCTIONS[ImprovementType.CLARITY] + "Draft text"

    def test_unknown_improvement_type_falls_back_to_style(self):
        messages = build_messages(NormalizedRequest.improve("Draft text", improvement_type="poetic"))

        assert messages[1]["content"].startswith(IMPROVEMENT_INSTRUCTIONS[ImprovementType.STYLE])

    def test_system_prompt_override(self):
        request = NormalizedRequest.generate("Hi", system_prompt="You write product copy.")

        assert build_messages(request)[0]["content"] == "You write product copy."
