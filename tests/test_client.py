"""Tests for the model call contract and the Gemini adapter."""

import asyncio
from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors
from google.genai import types

from material_transfer import client as client_module
from material_transfer.client import (
    GenAIModelClient,
    ImagePart,
    ModelRequest,
    ModelResponse,
    ResponseKind,
    build_config,
    extract_image,
    extract_text,
    make_client,
    response_from_genai,
)
from material_transfer.config import ModelConfig
from material_transfer.errors import ConfigurationError, NoContentReturned, RecitationRejected, TransportError


def _sdk_response(parts, finish_reason="STOP"):
    candidate = SimpleNamespace(finish_reason=finish_reason, content=SimpleNamespace(parts=parts))
    return SimpleNamespace(candidates=[candidate])


class TestResponseFromGenai:
    """Tests for flattening SDK responses."""

    def test_image_part(self):
        inline = SimpleNamespace(data=b"\x89PNG", mime_type="image/png")
        response = response_from_genai(_sdk_response([SimpleNamespace(inline_data=inline, text=None)]))
        assert response.image == ImagePart(b"\x89PNG", "image/png")
        assert response.finish_reason == "STOP"

    def test_text_part(self):
        response = response_from_genai(_sdk_response([SimpleNamespace(inline_data=None, text="Walnut")]))
        assert response.text == "Walnut"
        assert response.image is None

    def test_enum_finish_reason(self):
        response = response_from_genai(_sdk_response([], finish_reason=types.FinishReason.RECITATION))
        assert response.finish_reason == "RECITATION"
        assert response.is_recitation

    def test_no_candidates(self):
        response = response_from_genai(SimpleNamespace(candidates=None))
        assert response.finish_reason is None
        assert response.text is None and response.image is None


class TestExtract:
    """Tests for typed validation of responses."""

    def test_extract_text(self):
        assert extract_text(ModelResponse(text="ok")) == "ok"
        with pytest.raises(NoContentReturned):
            extract_text(ModelResponse(finish_reason="STOP"))

    def test_extract_image_recitation(self):
        """Test that a recitation finish reason fails even when an image is present."""
        response = ModelResponse(finish_reason="RECITATION", image=ImagePart(b"x", "image/png"))
        with pytest.raises(RecitationRejected):
            extract_image(response)

    def test_extract_image_missing(self):
        with pytest.raises(NoContentReturned):
            extract_image(ModelResponse(finish_reason="STOP", text="I can't"))


class TestBuildConfig:
    def test_text_has_no_config(self):
        assert build_config(ResponseKind.TEXT) is None

    def test_image_asks_for_square_image(self):
        config = build_config(ResponseKind.IMAGE)
        assert config.response_modalities == ["IMAGE"]
        assert config.image_config.aspect_ratio == "1:1"


class _FakeModels:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append(SimpleNamespace(model=model, contents=contents, config=config))
        if self.error is not None:
            raise self.error
        return self.result


def _fake_sdk(models: _FakeModels):
    return SimpleNamespace(aio=SimpleNamespace(models=models))


class TestGenAIModelClient:
    """Tests for the google-genai adapter."""

    def test_images_precede_prompt(self):
        models = _FakeModels(result=_sdk_response([SimpleNamespace(inline_data=None, text="hi")]))
        client = GenAIModelClient(_fake_sdk(models))
        request = ModelRequest(
            "gemini", "Describe", (ImagePart(b"a", "image/png"), ImagePart(b"b", "image/jpeg")), ResponseKind.TEXT
        )
        response = asyncio.run(client.generate(request))
        assert response.text == "hi"
        contents = models.calls[0].contents
        assert len(contents) == 3
        assert contents[0].inline_data.data == b"a"
        assert contents[1].inline_data.mime_type == "image/jpeg"
        assert contents[2].text == "Describe"
        assert models.calls[0].model == "gemini"

    def test_credentials_error_is_configuration(self):
        error = genai_errors.ClientError(403, {"error": {"message": "denied", "status": "PERMISSION_DENIED"}})
        client = GenAIModelClient(_fake_sdk(_FakeModels(error=error)))
        with pytest.raises(ConfigurationError):
            asyncio.run(client.generate(ModelRequest("gemini", "x")))

    def test_server_error_is_transport(self):
        error = genai_errors.ServerError(503, {"error": {"message": "overloaded", "status": "UNAVAILABLE"}})
        client = GenAIModelClient(_fake_sdk(_FakeModels(error=error)))
        with pytest.raises(TransportError):
            asyncio.run(client.generate(ModelRequest("gemini", "x")))


class TestMakeClient:
    """Tests for credential discovery."""

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
        with pytest.raises(ConfigurationError, match="GOOGLE_API_KEY"):
            make_client(ModelConfig())

    def test_api_key(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
        assert isinstance(make_client(ModelConfig()), GenAIModelClient)

    def _capture_vertex(self, monkeypatch):
        created = []

        def fake_client(**kwargs):
            created.append(kwargs)
            return SimpleNamespace(aio=None)

        monkeypatch.setattr(client_module.genai, "Client", fake_client)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "demo-project")
        return created

    def test_vertex_location_from_env(self, monkeypatch):
        created = self._capture_vertex(monkeypatch)
        monkeypatch.setenv("GOOGLE_CLOUD_LOCATION", "us-central1")
        make_client(ModelConfig())
        assert created == [{"vertexai": True, "project": "demo-project", "location": "us-central1"}]

    def test_vertex_location_precedence(self, monkeypatch):
        """Test config location first, then the environment, then the global endpoint."""
        created = self._capture_vertex(monkeypatch)
        monkeypatch.setenv("GOOGLE_CLOUD_LOCATION", "us-central1")
        make_client(ModelConfig(location="europe-west4"))
        monkeypatch.delenv("GOOGLE_CLOUD_LOCATION")
        make_client(ModelConfig())
        assert [kwargs["location"] for kwargs in created] == ["europe-west4", "global"]
