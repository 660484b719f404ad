"""
Tests for GeminiClient using a fake genai client (no network).
"""

from types import SimpleNamespace

import pytest

from answer_pipeline.models import ImagePart
from utils.gemini_client import GeminiClient, MalformedResponse, extract_sources
from utils.image_utils import encode_base64
from utils.retry import RateLimitExceeded


class FakeAPIError(Exception):
    def __init__(self, code):
        super().__init__(f"{code} RESOURCE_EXHAUSTED")
        self.code = code


def grounded_response(text, chunks=()):
    metadata = SimpleNamespace(grounding_chunks=list(chunks))
    return SimpleNamespace(text=text, candidates=[SimpleNamespace(grounding_metadata=metadata)])


def web_chunk(uri, title=""):
    return SimpleNamespace(web=SimpleNamespace(uri=uri, title=title))


class FakeModels:
    def __init__(self, responses=None, image_response=None, errors=0):
        self.responses = list(responses or [])
        self.image_response = image_response
        self.errors = errors
        self.content_calls = []
        self.image_calls = []

    def generate_content(self, model, contents, config=None):
        self.content_calls.append({"model": model, "contents": contents, "config": config})
        if self.errors:
            self.errors -= 1
            raise FakeAPIError(429)
        return self.responses.pop(0)

    def generate_images(self, model, prompt, config=None):
        self.image_calls.append({"model": model, "prompt": prompt, "config": config})
        if self.errors:
            self.errors -= 1
            raise FakeAPIError(429)
        return self.image_response


def make_client(models, **kwargs):
    kwargs.setdefault("initial_delay", 0)
    kwargs.setdefault("jitter", 0)
    return GeminiClient(client=SimpleNamespace(models=models), verbose=False, **kwargs)


class TestConstruction:

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            GeminiClient()

    def test_model_overrides(self):
        client = make_client(FakeModels(), lite_model="l", answer_model="a", image_model="i")
        assert (client.lite_model, client.answer_model, client.image_model) == ("l", "a", "i")


class TestGenerateText:

    def test_returns_text_with_lite_model(self):
        models = FakeModels([SimpleNamespace(text="YES")])
        client = make_client(models)

        response = client.generate_text("question?")

        assert response.text == "YES"
        assert models.content_calls[0]["model"] == client.lite_model
        assert models.content_calls[0]["config"] is None

    def test_json_mode_with_schema(self):
        models = FakeModels([SimpleNamespace(text='{"questions": []}')])
        client = make_client(models)

        client.generate_text(
            "extract",
            model="pro",
            system_instruction="be exact",
            response_schema={"type": "OBJECT", "properties": {"questions": {"type": "ARRAY", "items": {"type": "STRING"}}}},
        )

        call = models.content_calls[0]
        assert call["model"] == "pro"
        assert call["config"].response_mime_type == "application/json"

    def test_missing_text_is_malformed(self):
        client = make_client(FakeModels([SimpleNamespace(text=None)]))
        with pytest.raises(MalformedResponse):
            client.generate_text("hello")

    def test_rate_limit_retried(self):
        models = FakeModels([SimpleNamespace(text="OK")], errors=2)
        client = make_client(models)

        assert client.generate_text("hi").text == "OK"
        assert len(models.content_calls) == 3

    def test_rate_limit_exhausted(self):
        models = FakeModels([], errors=10)
        client = make_client(models, max_retries=2)

        with pytest.raises(RateLimitExceeded):
            client.generate_text("hi")
        assert len(models.content_calls) == 3


class TestGenerateGrounded:

    def test_sources_and_search_tool(self):
        chunks = [web_chunk("https://a.example", "A"), web_chunk("", "no uri"), web_chunk("https://b.example")]
        models = FakeModels([grounded_response("Answer", chunks)])
        client = make_client(models)

        response = client.generate_grounded("prompt", web_search=True)

        assert response.text == "Answer"
        assert [(s.uri, s.title) for s in response.sources] == [
            ("https://a.example", "A"),
            ("https://b.example", ""),
        ]
        call = models.content_calls[0]
        assert call["model"] == client.answer_model
        assert len(call["config"].tools) == 1

    def test_no_tools_without_search(self):
        models = FakeModels([grounded_response("Answer")])
        client = make_client(models)

        client.generate_grounded("prompt", web_search=False)

        assert not models.content_calls[0]["config"].tools

    def test_images_sent_as_inline_parts(self):
        images = [
            ImagePart(data=encode_base64(b"\x89PNG-one"), mime_type="image/png"),
            ImagePart(data=encode_base64(b"\xff\xd8-two"), mime_type="image/jpeg"),
        ]
        models = FakeModels([grounded_response("Answer")])
        client = make_client(models)

        client.generate_grounded("prompt", images=images)

        parts = models.content_calls[0]["contents"][0].parts
        assert len(parts) == 3
        assert parts[0].text == "prompt"
        assert parts[1].inline_data.data == b"\x89PNG-one"
        assert parts[2].inline_data.mime_type == "image/jpeg"


class TestGenerateImage:

    def test_returns_bytes(self):
        image = SimpleNamespace(image=SimpleNamespace(image_bytes=b"jpeg-bytes"))
        models = FakeModels(image_response=SimpleNamespace(generated_images=[image]))
        client = make_client(models)

        response = client.generate_image("a cat")

        assert response.image_bytes == b"jpeg-bytes"
        assert response.mime_type == "image/jpeg"
        assert models.image_calls[0]["prompt"] == "a cat"
        assert models.image_calls[0]["config"].number_of_images == 1

    def test_no_images_is_malformed(self):
        models = FakeModels(image_response=SimpleNamespace(generated_images=[]))
        with pytest.raises(MalformedResponse):
            make_client(models).generate_image("a cat")


class TestExtractSources:

    def test_no_candidates(self):
        assert extract_sources(SimpleNamespace(text="x", candidates=None)) == []

    def test_no_grounding_metadata(self):
        response = SimpleNamespace(candidates=[SimpleNamespace(grounding_metadata=None)])
        assert extract_sources(response) == []

    def test_chunk_without_web(self):
        response = grounded_response("x", [SimpleNamespace(web=None)])
        assert extract_sources(response) == []
