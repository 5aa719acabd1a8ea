"""
Tests for the Gemini poster adapter.

The SDK client is replaced by a fake factory, so no request leaves the process.
"""
import asyncio
import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from google.genai import errors as genai_errors

from conftest import FakeCredentials
from errors import (
    EmptyResponseError,
    ErrorKind,
    InvalidSourceImage,
    MissingCredentialError,
    NoImageRenderedError,
    SafetyBlockedError,
    TransportError,
)
from poster_service import PosterGenerator, build_prompt, build_request, extract_poster
from settings import PRO_MODEL, STANDARD_MODEL


def text_part(text="Here is your poster"):
    return SimpleNamespace(text=text, inline_data=None)


def image_part(data=b"poster-bytes"):
    return SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type="image/png"))


def candidate(parts, finish_reason="STOP"):
    return SimpleNamespace(finish_reason=finish_reason, content=SimpleNamespace(parts=parts))


def response(*candidates):
    return SimpleNamespace(candidates=list(candidates))


def fake_client_factory(result=None, error=None):
    generate_content = AsyncMock(return_value=result, side_effect=error)
    aclose = AsyncMock()
    keys = []

    def factory(api_key):
        keys.append(api_key)
        return SimpleNamespace(
            aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content), aclose=aclose)
        )

    factory.aclose = aclose
    return factory, generate_content, keys


class TestExtractPoster:
    """Response decoding rules."""

    def test_returns_png_data_url(self):
        url = extract_poster(response(candidate([image_part(b"abc")])))
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == b"abc"

    def test_string_payload_is_used_as_is(self):
        url = extract_poster(response(candidate([image_part("QUJD")])))
        assert url == "data:image/png;base64,QUJD"

    def test_empty_candidates(self):
        with pytest.raises(EmptyResponseError):
            extract_poster(response())

    def test_missing_candidates_attribute(self):
        with pytest.raises(EmptyResponseError):
            extract_poster(SimpleNamespace(candidates=None))

    def test_safety_wins_over_later_candidates_with_images(self):
        blocked = candidate([image_part(b"first")], finish_reason="SAFETY")
        with pytest.raises(SafetyBlockedError) as excinfo:
            extract_poster(response(blocked, candidate([image_part(b"second")])))
        assert excinfo.value.kind == ErrorKind.SAFETY_BLOCKED

    def test_safety_enum_value(self):
        reason = SimpleNamespace(value="SAFETY")
        with pytest.raises(SafetyBlockedError):
            extract_poster(response(candidate([image_part()], finish_reason=reason)))

    def test_first_image_part_wins(self):
        parts = [
            text_part(),
            image_part(b"second-position"),
            text_part("more text"),
            text_part("even more"),
            image_part(b"fifth-position"),
        ]
        url = extract_poster(response(candidate(parts)))
        assert base64.b64decode(url.split(",", 1)[1]) == b"second-position"

    def test_text_only_reply(self):
        with pytest.raises(NoImageRenderedError):
            extract_poster(response(candidate([text_part(), text_part("sorry")])))

    def test_candidate_without_content(self):
        with pytest.raises(NoImageRenderedError):
            extract_poster(response(SimpleNamespace(finish_reason="STOP", content=None)))


class TestBuildRequest:
    def test_prompt_mentions_copy_and_ratio(self, poster_config):
        prompt = build_prompt(poster_config)
        assert '"Kopi Gula Aren"' in prompt
        assert '"Rp 25.000"' in prompt
        assert '"Manis alami"' in prompt
        assert "Required Aspect Ratio: 1:1" in prompt
        assert "studio quality" in prompt

    def test_image_part_comes_first(self, png_data_url, png_bytes, poster_config):
        _, contents, _ = build_request(png_data_url, poster_config, STANDARD_MODEL, include_image_size=False)
        assert contents[0].inline_data.data == png_bytes
        assert contents[0].inline_data.mime_type == "image/png"
        assert "promotional poster" in contents[1].text

    def test_requires_comma_in_data_url(self, poster_config):
        with pytest.raises(InvalidSourceImage):
            build_request("data:image/png;base64", poster_config, STANDARD_MODEL, include_image_size=False)

    def test_rejects_invalid_base64(self, poster_config):
        with pytest.raises(InvalidSourceImage):
            build_request("data:image/png;base64,@@not-base64@@", poster_config, STANDARD_MODEL, False)


class TestPosterGenerator:
    def test_standard_tier_omits_image_size(self, png_data_url, poster_config):
        factory, generate_content, _ = fake_client_factory(response(candidate([image_part()])))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        url = asyncio.run(generator.generate(png_data_url, poster_config, use_elevated_tier=False))

        assert url.startswith("data:image/png;base64,")
        kwargs = generate_content.call_args.kwargs
        assert kwargs["model"] == STANDARD_MODEL
        assert kwargs["config"].image_config.aspect_ratio == "1:1"
        assert kwargs["config"].image_config.image_size is None

    def test_elevated_tier_sends_resolution(self, png_data_url, poster_config):
        poster_config.quality = "4K"
        factory, generate_content, _ = fake_client_factory(response(candidate([image_part()])))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        asyncio.run(generator.generate(png_data_url, poster_config, use_elevated_tier=True))

        kwargs = generate_content.call_args.kwargs
        assert kwargs["model"] == PRO_MODEL
        assert kwargs["config"].image_config.image_size == "4K"

    def test_credential_resolved_on_every_call(self, png_data_url, poster_config):
        credentials = FakeCredentials(api_key="first-key")
        factory, _, keys = fake_client_factory(response(candidate([image_part()])))
        generator = PosterGenerator(credentials, client_factory=factory)

        asyncio.run(generator.generate(png_data_url, poster_config))
        credentials.api_key = "second-key"
        asyncio.run(generator.generate(png_data_url, poster_config))

        assert keys == ["first-key", "second-key"]

    def test_missing_credential(self, png_data_url, poster_config):
        factory, generate_content, _ = fake_client_factory()
        generator = PosterGenerator(FakeCredentials(api_key=None), client_factory=factory)

        with pytest.raises(MissingCredentialError) as excinfo:
            asyncio.run(generator.generate(png_data_url, poster_config))

        assert excinfo.value.kind == ErrorKind.MISSING_CREDENTIAL
        generate_content.assert_not_called()

    def test_api_error_becomes_transport_error(self, png_data_url, poster_config):
        api_error = genai_errors.ClientError(
            404,
            {"error": {"code": 404, "message": "Requested entity was not found.", "status": "NOT_FOUND"}},
        )
        factory, _, _ = fake_client_factory(error=api_error)
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(generator.generate(png_data_url, poster_config, use_elevated_tier=True))

        assert excinfo.value.status_code == 404
        assert excinfo.value.__cause__ is api_error

    def test_network_error_keeps_message(self, png_data_url, poster_config):
        factory, _, _ = fake_client_factory(error=httpx.ConnectError("connection refused"))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError, match="connection refused"):
            asyncio.run(generator.generate(png_data_url, poster_config))

    def test_safety_block_propagates(self, png_data_url, poster_config):
        factory, _, _ = fake_client_factory(response(candidate([], finish_reason="SAFETY")))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(SafetyBlockedError):
            asyncio.run(generator.generate(png_data_url, poster_config))

    def test_unknown_sdk_failure_keeps_message(self, png_data_url, poster_config):
        class HostUnreachable(Exception):
            pass

        failure = HostUnreachable("Cannot connect to host generativelanguage.googleapis.com")
        factory, _, _ = fake_client_factory(error=failure)
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError) as excinfo:
            asyncio.run(generator.generate(png_data_url, poster_config))

        assert excinfo.value.kind == ErrorKind.TRANSPORT
        assert excinfo.value.message == "Cannot connect to host generativelanguage.googleapis.com"
        assert excinfo.value.__cause__ is failure

    def test_timeout_without_message_uses_type_name(self, png_data_url, poster_config):
        factory, _, _ = fake_client_factory(error=asyncio.TimeoutError())
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError, match="TimeoutError"):
            asyncio.run(generator.generate(png_data_url, poster_config))

    def test_non_iterable_parts_is_transport_error(self, png_data_url, poster_config):
        malformed = response(SimpleNamespace(finish_reason="STOP", content=SimpleNamespace(parts=42)))
        factory, _, _ = fake_client_factory(malformed)
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError):
            asyncio.run(generator.generate(png_data_url, poster_config))

    def test_unexpected_inline_data_type_is_transport_error(self, png_data_url, poster_config):
        factory, _, _ = fake_client_factory(response(candidate([image_part(data=12345)])))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)

        with pytest.raises(TransportError):
            asyncio.run(generator.generate(png_data_url, poster_config))

    def test_client_closed_after_success_and_failure(self, png_data_url, poster_config):
        factory, _, _ = fake_client_factory(response(candidate([image_part()])))
        generator = PosterGenerator(FakeCredentials(), client_factory=factory)
        asyncio.run(generator.generate(png_data_url, poster_config))
        factory.aclose.assert_awaited_once()

        failing, _, _ = fake_client_factory(error=httpx.ReadTimeout("read timed out"))
        generator = PosterGenerator(FakeCredentials(), client_factory=failing)
        with pytest.raises(TransportError):
            asyncio.run(generator.generate(png_data_url, poster_config))
        failing.aclose.assert_awaited_once()
