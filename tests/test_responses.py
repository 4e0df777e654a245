"""Tests for model response text resolution"""
import json
from types import SimpleNamespace

from invoice_uploader.responses import (
    CandidatesResponse,
    OutputItemsResponse,
    PlainTextResponse,
    resolve_response_text,
    resolve_variant,
)


def test_output_text_convenience_field():
    response = SimpleNamespace(output_text='{"total": 1}', output=[])
    assert resolve_response_text(response) == '{"total": 1}'


def test_blank_output_text_falls_through_to_output_items():
    response = {
        "output_text": "   ",
        "output": [
            {"type": "reasoning", "summary": []},
            {"type": "message", "content": [{"type": "output_text", "text": '{"a": 1}'}]},
        ],
    }
    assert resolve_response_text(response) == '{"a": 1}'


def test_output_items_concatenate_text_parts():
    response = SimpleNamespace(
        output=[
            "first",
            SimpleNamespace(content=[SimpleNamespace(text="second"), SimpleNamespace(type="refusal")]),
        ]
    )
    assert resolve_response_text(response) == "first\nsecond"


def test_gemini_candidates():
    response = {
        "candidates": [
            {"content": {"parts": [{"text": '{"invoice_number":'}, {"text": ' "X"}'}]}},
            {"content": {"parts": [{"text": "ignored"}]}},
        ]
    }
    assert resolve_response_text(response) == '{"invoice_number":\n "X"}'


def test_candidates_with_content_list():
    variant = CandidatesResponse([SimpleNamespace(content=[SimpleNamespace(text="a"), "b"])])
    assert resolve_variant(variant) == "a\nb"


def test_ollama_chat_message():
    response = {"model": "qwen3-vl", "message": {"role": "assistant", "content": "{}"}}
    assert resolve_response_text(response) == "{}"


def test_plain_string_response():
    assert resolve_response_text("hello") == "hello"


def test_unrecognized_response_is_stringified():
    response = {"foo": "bar"}
    assert resolve_response_text(response) == json.dumps(response)


def test_empty_output_items_fall_back_to_stringify():
    response = {"output": []}
    assert resolve_response_text(response) == json.dumps(response)


def test_html_entities_are_decoded():
    response = {"output_text": "{&quot;supplier_name&quot;: &quot;A &amp; B&quot;}"}
    assert resolve_response_text(response) == '{"supplier_name": "A & B"}'


def test_resolver_never_raises():
    class Exploding:
        @property
        def output_text(self):
            raise RuntimeError("broken SDK object")

        def __str__(self):
            return "exploding-response"

    assert resolve_response_text(Exploding()) == '"exploding-response"'


def test_pydantic_like_objects_are_dumped():
    class FakeModel:
        def model_dump(self, mode="python"):
            return {"id": "resp_1"}

    assert resolve_response_text(FakeModel()) == '{"id": "resp_1"}'


def test_variant_resolvers():
    assert resolve_variant(PlainTextResponse("x")) == "x"
    assert resolve_variant(OutputItemsResponse([{"text": "y"}])) == "y"
