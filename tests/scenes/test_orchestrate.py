"""Tests for SceneGenerator orchestration (model calls mocked)."""

import asyncio
import io
from unittest.mock import AsyncMock

import httpx
import pytest
from PIL import Image

from eai_studio.config import Settings
from eai_studio.exceptions import (
    AttemptInProgressError,
    EmptyResultError,
    GenerationError,
    GenerationTimeoutError,
    InvalidContentError,
    ModelInvocationError,
    ValidationError,
)
from eai_studio.scenes.models import (
    AttemptState,
    CarDescription,
    GeneratedArtifact,
    SceneKind,
    SceneRequest,
    UploadedBackground,
    UploadedCar,
)
from eai_studio.scenes.orchestrate import (
    CALL_FETCH_BACKGROUND,
    CALL_GENERATE,
    CALL_IDENTIFY,
    CALL_REGENERATE,
    FALLBACK_MODEL_LABEL,
    MSG_DONE,
    MSG_DOWNLOADING,
    MSG_GENERATING_EXTERIOR,
    MSG_IDENTIFYING,
    SceneGenerator,
    describe_error,
)
from eai_studio.scenes.prompts import SIGNAGE_NEON, SIGNAGE_PRESERVE
from eai_studio.util.image_codec import encode_from_url


def make_image_bytes(fmt="PNG"):
    buffer = io.BytesIO()
    Image.new("RGB", (32, 24), (90, 90, 90)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def generator(mock_gemini, settings):
    return SceneGenerator(mock_gemini, settings=settings)


@pytest.fixture
def url_request(car_image):
    return SceneRequest(
        scene_kind=SceneKind.EXTERIOR,
        car_source=UploadedCar(image=car_image),
        background_url="https://example.com/fondo.jpg",
    )


@pytest.fixture
def previous_artifact(result_image):
    return GeneratedArtifact(
        image=result_image,
        identified_model="Volkswagen Golf GTI",
        identified=True,
        scene_kind=SceneKind.EXTERIOR,
    )


def _sent_parts(mock_gemini):
    return mock_gemini.generate_image.call_args.args[0]


@pytest.mark.unit
class TestGenerate:
    """Happy paths of SceneGenerator.generate."""

    @pytest.mark.asyncio
    async def test_exterior_upload(self, generator, mock_gemini, exterior_request, result_image):
        messages = []

        artifact = await generator.generate(exterior_request, on_progress=messages.append)

        assert artifact.image == result_image
        assert artifact.identified_model == "Volkswagen Golf GTI"
        assert artifact.identified is True
        assert generator.last_attempt.state is AttemptState.DONE
        assert generator.last_attempt.calls == [CALL_IDENTIFY, CALL_GENERATE]
        assert messages[1] == MSG_IDENTIFYING
        assert MSG_GENERATING_EXTERIOR in messages
        assert messages[-1] == MSG_DONE

    @pytest.mark.asyncio
    async def test_sends_instruction_then_attachments(self, generator, mock_gemini, exterior_request,
                                                      background_image, car_image, settings):
        await generator.generate(exterior_request)

        parts = _sent_parts(mock_gemini)
        assert isinstance(parts[0], str)
        assert parts[1:] == [background_image, car_image]
        assert mock_gemini.generate_image.call_args.kwargs["model"] == settings.image_model

    @pytest.mark.asyncio
    async def test_description_skips_identification_call(self, generator, mock_gemini, background_image):
        request = SceneRequest(
            scene_kind=SceneKind.EXTERIOR,
            car_source=CarDescription(make="Seat", model="Ibiza", year="2019", color="blanco"),
            background_file=UploadedBackground(image=background_image),
        )

        artifact = await generator.generate(request)

        mock_gemini.generate_text.assert_not_called()
        assert artifact.identified_model == "Seat Ibiza 2019"
        assert artifact.identified is True

    @pytest.mark.asyncio
    async def test_identification_disabled(self, mock_gemini, exterior_request):
        generator = SceneGenerator(mock_gemini, settings=Settings(identify_model=False))

        artifact = await generator.generate(exterior_request)

        mock_gemini.generate_text.assert_not_called()
        assert artifact.identified_model == FALLBACK_MODEL_LABEL
        assert artifact.identified is False

    @pytest.mark.asyncio
    async def test_interior(self, generator, mock_gemini, interior_request, car_image):
        artifact = await generator.generate(interior_request)

        assert artifact.scene_kind is SceneKind.INTERIOR
        assert _sent_parts(mock_gemini)[1:] == [car_image]
        assert "95000 km" in artifact.prompt

    @pytest.mark.asyncio
    async def test_url_background_is_fetched(self, mock_gemini, settings, url_request, background_image):
        fetch = AsyncMock(return_value=background_image)
        generator = SceneGenerator(mock_gemini, settings=settings, fetch_background=fetch)
        messages = []

        await generator.generate(url_request, on_progress=messages.append)

        fetch.assert_awaited_once_with("https://example.com/fondo.jpg")
        assert MSG_DOWNLOADING in messages
        assert CALL_FETCH_BACKGROUND in generator.last_attempt.calls
        assert _sent_parts(mock_gemini)[1] == background_image

    @pytest.mark.asyncio
    async def test_broken_progress_callback_is_ignored(self, generator, exterior_request):
        def callback(message):
            raise RuntimeError("ui went away")

        artifact = await generator.generate(exterior_request, on_progress=callback)

        assert artifact is not None


@pytest.mark.unit
class TestIdentificationFallback:
    """Identification failures never block generation."""

    @pytest.mark.asyncio
    async def test_model_error_uses_fallback(self, generator, mock_gemini, exterior_request):
        mock_gemini.generate_text.side_effect = ModelInvocationError("boom")

        artifact = await generator.generate(exterior_request)

        assert artifact.identified_model == FALLBACK_MODEL_LABEL
        assert artifact.identified is False
        assert generator.last_attempt.warnings
        mock_gemini.generate_image.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_answer_uses_fallback(self, generator, mock_gemini, exterior_request):
        mock_gemini.generate_text.return_value = "desconocido"

        result = await generator.identify_model(exterior_request)

        assert result.label == FALLBACK_MODEL_LABEL
        assert result.identified is False
        assert result.error

    @pytest.mark.asyncio
    async def test_unexpected_exception_uses_fallback(self, generator, mock_gemini, exterior_request):
        mock_gemini.generate_text.side_effect = RuntimeError("socket closed")

        result = await generator.identify_model(exterior_request)

        assert result.identified is False


@pytest.mark.unit
class TestGenerateFailures:
    """Error paths of SceneGenerator.generate."""

    @pytest.mark.asyncio
    async def test_incomplete_request_makes_no_calls(self, generator, mock_gemini, car_image):
        request = SceneRequest(scene_kind=SceneKind.EXTERIOR, car_source=UploadedCar(image=car_image))

        with pytest.raises(ValidationError) as exc_info:
            await generator.generate(request)

        assert exc_info.value.fields == ["background"]
        assert "fondo" in exc_info.value.user_message
        mock_gemini.generate_text.assert_not_called()
        mock_gemini.generate_image.assert_not_called()
        assert generator.last_attempt.state is AttemptState.FAILED
        assert generator.last_attempt.calls == []

    @pytest.mark.asyncio
    async def test_invalid_background_url_stops_before_generation(self, mock_gemini, settings, url_request):
        fetch = AsyncMock(side_effect=InvalidContentError("text/html"))
        generator = SceneGenerator(mock_gemini, settings=settings, fetch_background=fetch)

        with pytest.raises(InvalidContentError):
            await generator.generate(url_request)

        mock_gemini.generate_image.assert_not_called()
        assert generator.last_attempt.state is AttemptState.FAILED
        assert "CORS" in generator.last_attempt.error

    @pytest.mark.asyncio
    async def test_empty_result(self, generator, mock_gemini, exterior_request):
        mock_gemini.generate_image.side_effect = EmptyResultError()

        with pytest.raises(EmptyResultError) as exc_info:
            await generator.generate(exterior_request)

        assert describe_error(exc_info.value) == "El modelo no devolvió una imagen. Por favor, inténtalo de nuevo."
        assert generator.last_attempt.artifact is None

    @pytest.mark.asyncio
    async def test_timeout(self, mock_gemini, exterior_request):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        mock_gemini.generate_image.side_effect = slow
        generator = SceneGenerator(mock_gemini, settings=Settings(model_timeout=0.01, identify_model=False))

        with pytest.raises(GenerationTimeoutError):
            await generator.generate(exterior_request)

        assert generator.last_attempt.state is AttemptState.FAILED

    @pytest.mark.asyncio
    async def test_concurrent_attempt_rejected(self, mock_gemini, settings, exterior_request, result_image):
        release = asyncio.Event()

        async def blocked(*args, **kwargs):
            await release.wait()
            return result_image

        mock_gemini.generate_image.side_effect = blocked
        generator = SceneGenerator(mock_gemini, settings=settings)

        first = asyncio.create_task(generator.generate(exterior_request))
        while not mock_gemini.generate_image.await_count and not first.done():
            await asyncio.sleep(0)

        assert generator.is_busy
        with pytest.raises(AttemptInProgressError):
            await generator.generate(exterior_request)

        release.set()
        artifact = await first
        assert artifact.image == result_image
        assert not generator.is_busy

    @pytest.mark.asyncio
    async def test_timeout_message_is_user_facing(self, mock_gemini, exterior_request):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        mock_gemini.generate_image.side_effect = slow
        generator = SceneGenerator(mock_gemini, settings=Settings(model_timeout=0.01, identify_model=False))

        with pytest.raises(GenerationTimeoutError):
            await generator.generate(exterior_request)

        assert generator.last_attempt.error == "El modelo tardó demasiado en responder. Por favor, inténtalo de nuevo."

    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_attempt(self, generator, mock_gemini, exterior_request):
        mock_gemini.generate_image.side_effect = KeyError("inline_data")

        with pytest.raises(GenerationError) as exc_info:
            await generator.generate(exterior_request)

        assert isinstance(exc_info.value.__cause__, KeyError)
        assert generator.last_attempt.state is AttemptState.FAILED
        assert generator.last_attempt.error == GenerationError.default_user_message
        assert not generator.is_busy

    @pytest.mark.asyncio
    async def test_preset_named_url_background_gets_neon_rule(self, mock_gemini, settings, car_image):
        body = make_image_bytes(fmt="JPEG")

        def handler(request):
            return httpx.Response(200, content=body, headers={"content-type": "image/jpeg"})

        async def fetch(url):
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await encode_from_url(url, client=client)

        request = SceneRequest(
            scene_kind=SceneKind.EXTERIOR,
            car_source=UploadedCar(image=car_image),
            background_url="https://example.com/fondo-final.jpg",
        )
        generator = SceneGenerator(mock_gemini, settings=settings, fetch_background=fetch)

        artifact = await generator.generate(request)

        assert SIGNAGE_NEON in artifact.prompt
        assert SIGNAGE_PRESERVE not in artifact.prompt

    def test_describe_unknown_error(self):
        assert describe_error(RuntimeError("x")) == "Error: x"


@pytest.mark.unit
class TestRegenerate:
    """Tests for SceneGenerator.regenerate."""

    @pytest.mark.asyncio
    async def test_attaches_previous_result(self, generator, mock_gemini, exterior_request, previous_artifact):
        artifact = await generator.regenerate(previous_artifact, exterior_request)

        parts = _sent_parts(mock_gemini)
        assert parts[-1] == previous_artifact.image
        assert len(parts) == 4
        assert artifact.identified_model == "Volkswagen Golf GTI"
        assert generator.last_attempt.calls == [CALL_REGENERATE]
        mock_gemini.generate_text.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_keeps_previous(self, generator, mock_gemini, exterior_request, previous_artifact):
        mock_gemini.generate_image.side_effect = ModelInvocationError("500")

        with pytest.raises(ModelInvocationError):
            await generator.regenerate(previous_artifact, exterior_request)

        assert generator.last_attempt.state is AttemptState.FAILED
        assert generator.last_attempt.artifact is previous_artifact

    @pytest.mark.asyncio
    async def test_unexpected_failure_keeps_previous(self, generator, mock_gemini, exterior_request,
                                                     previous_artifact):
        mock_gemini.generate_image.side_effect = AttributeError("candidates")

        with pytest.raises(GenerationError):
            await generator.regenerate(previous_artifact, exterior_request)

        assert generator.last_attempt.state is AttemptState.FAILED
        assert generator.last_attempt.artifact is previous_artifact
        assert generator.last_attempt.error

    @pytest.mark.asyncio
    async def test_interior_not_supported(self, generator, mock_gemini, interior_request, result_image):
        previous = GeneratedArtifact(image=result_image, identified_model="x", scene_kind=SceneKind.INTERIOR)

        with pytest.raises(ValidationError):
            await generator.regenerate(previous, interior_request)

        mock_gemini.generate_image.assert_not_called()


@pytest.mark.integration
@pytest.mark.requires_api
@pytest.mark.slow
class TestSceneGeneratorLive:
    """End-to-end generation against the real model."""

    @pytest.mark.asyncio
    async def test_generate_exterior_live(self, check_api_key, exterior_request):
        from eai_studio.util.gemini import GeminiAPI

        generator = SceneGenerator(GeminiAPI(api_key=check_api_key))

        artifact = await generator.generate(exterior_request)

        assert artifact.image.data
