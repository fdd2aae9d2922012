"""Scene generation orchestration.

Runs one generation attempt as a small state machine:

    idle -> validating -> (identifying_model) -> awaiting_background
         -> generating -> done | failed

and, from ``done`` on an exterior scene, ``regenerating`` with the previous
result attached.

1. Validate the request (no network call happens before this passes)
2. Identify the car make/model (optional; failures fall back to a generic label)
3. Resolve the background (upload as-is, or download the URL)
4. Compose the prompt and call the image model
5. Return a GeneratedArtifact
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from eai_studio.config import Settings
from eai_studio.exceptions import (
    AttemptInProgressError,
    GenerationError,
    GenerationTimeoutError,
    IdentificationError,
    ImageCodecError,
    StudioError,
    ValidationError,
)
from eai_studio.scenes.models import (
    AttemptState,
    CarDescription,
    EncodedImage,
    GeneratedArtifact,
    GenerationAttempt,
    IdentificationResult,
    RemoteBackground,
    SceneKind,
    SceneRequest,
    UploadedCar,
    validation_message,
)
from eai_studio.scenes.prompts import (
    compose,
    identification_prompt,
    parse_identification,
    regeneration_prompt,
)
from eai_studio.util.gemini import GeminiAPI
from eai_studio.util.image_codec import encode_from_url, encode_local_file

logger = logging.getLogger(__name__)

FALLBACK_MODEL_LABEL = "Vehículo"

CALL_IDENTIFY = "identify_model"
CALL_FETCH_BACKGROUND = "resolve_background"
CALL_GENERATE = "generate_image"
CALL_REGENERATE = "regenerate_image"

MSG_VALIDATING = "Comprobando los datos de la escena..."
MSG_IDENTIFYING = "Identificando el modelo del coche..."
MSG_DOWNLOADING = "Descargando imagen de fondo desde la URL..."
MSG_PREPARING = "Preparando imágenes y generando tu escena..."
MSG_GENERATING_EXTERIOR = "La IA está creando tu escena, esto puede tardar un momento..."
MSG_GENERATING_INTERIOR = "La IA está creando tu escena interior..."
MSG_REGENERATING = "La IA está corrigiendo la escala y la posición del coche..."
MSG_DONE = "¡Escena generada!"

ProgressCallback = Callable[[str], None]
BackgroundFetcher = Callable[[str], Awaitable[EncodedImage]]


class SceneGenerator:
    """Sequences model calls for one session.

    Only one attempt may run at a time; a second call while one is in flight
    raises AttemptInProgressError.
    """

    def __init__(
        self,
        gemini: GeminiAPI,
        settings: Optional[Settings] = None,
        fetch_background: Optional[BackgroundFetcher] = None,
    ):
        """
        Args:
            gemini: Configured Gemini wrapper (injected, never created here)
            settings: Model names, timeouts and optional assets
            fetch_background: Coroutine downloading a background URL
                (defaults to encode_from_url with the configured timeout)
        """
        self.gemini = gemini
        self.settings = settings or Settings()
        self._fetch_background = fetch_background or self._default_fetch
        self._lock = asyncio.Lock()
        self._logo = self._load_logo(self.settings.logo_path)
        self.last_attempt = GenerationAttempt()

    @staticmethod
    def _load_logo(logo_path: Optional[Path]) -> Optional[EncodedImage]:
        if logo_path is None:
            return None
        try:
            return encode_local_file(logo_path)
        except ImageCodecError as e:
            logger.warning(f"Logo asset {logo_path} unusable, continuing without it: {e}")
            return None

    async def _default_fetch(self, url: str) -> EncodedImage:
        return await encode_from_url(url, timeout=self.settings.fetch_timeout)

    @property
    def is_busy(self) -> bool:
        """True while an attempt is in flight."""
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Attempt bookkeeping
    # ------------------------------------------------------------------

    def _transition(
        self,
        attempt: GenerationAttempt,
        state: AttemptState,
        message: Optional[str],
        on_progress: Optional[ProgressCallback],
    ) -> None:
        attempt.state = state
        logger.debug(f"Attempt state -> {state.value}")
        if message is None:
            return
        attempt.progress.append(message)
        logger.info(message)
        if on_progress is not None:
            try:
                on_progress(message)
            except Exception as e:
                logger.warning(f"Progress callback raised, ignoring: {e}")

    def _fail(self, attempt: GenerationAttempt, error: StudioError) -> None:
        attempt.state = AttemptState.FAILED
        attempt.error = error.user_message
        logger.error(f"Scene generation failed: {error}")

    async def _call_model(self, coro: Awaitable, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.model_timeout)
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(f"{what} timed out after {self.settings.model_timeout:.0f}s") from e

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _validate(self, request: SceneRequest) -> None:
        missing = request.missing_fields()
        if missing:
            raise ValidationError(
                f"Scene request is missing: {', '.join(missing)}",
                fields=missing,
                user_message=validation_message(missing),
            )

    async def identify_model(self, request: SceneRequest) -> IdentificationResult:
        """
        Best-effort make/model label for the car.

        Returns an IdentificationResult instead of raising; ``identified`` is
        False and ``error`` is set when the fallback label is used.
        """
        if isinstance(request.car_source, CarDescription):
            return IdentificationResult(label=request.car_source.label, identified=True)

        if not isinstance(request.car_source, UploadedCar) or not self.settings.identify_model:
            return IdentificationResult(label=FALLBACK_MODEL_LABEL, identified=False)

        try:
            answer = await self._call_model(
                self.gemini.generate_text(
                    [identification_prompt(request.scene_kind), request.car_source.image],
                    model=self.settings.text_model,
                ),
                "Model identification",
            )
            label = parse_identification(answer)
            if label is None:
                raise IdentificationError(f"Model could not identify the car (answer: {answer!r})")
        except Exception as e:
            # optional step: any failure downgrades to the fallback label
            logger.warning(f"Car identification failed, using fallback label: {e}")
            return IdentificationResult(label=FALLBACK_MODEL_LABEL, identified=False, error=str(e))

        logger.info(f"Identified car model: {label}")
        return IdentificationResult(label=label, identified=True)

    async def _resolve_background(self, request: SceneRequest, attempt: GenerationAttempt, on_progress) -> Optional[EncodedImage]:
        source = request.background
        if not isinstance(source, RemoteBackground):
            self._transition(attempt, AttemptState.AWAITING_BACKGROUND, MSG_PREPARING, on_progress)
            return None
        self._transition(attempt, AttemptState.AWAITING_BACKGROUND, MSG_DOWNLOADING, on_progress)
        attempt.calls.append(CALL_FETCH_BACKGROUND)
        return await self._fetch_background(source.url)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def generate(self, request: SceneRequest, on_progress: Optional[ProgressCallback] = None) -> GeneratedArtifact:
        """
        Run a full generation attempt.

        Args:
            request: Scene request built from the form inputs
            on_progress: Optional callback receiving human-readable progress messages

        Returns:
            GeneratedArtifact with the raw image and identified model label

        Raises:
            AttemptInProgressError: If another attempt is still running
            ValidationError: If required fields are missing (no network call made)
            FetchError / InvalidContentError: If the background URL cannot be used
            EmptyResultError: If the model returned no image
            ModelInvocationError: If the model call failed or was blocked
            GenerationTimeoutError: If the model call timed out
        """
        if self._lock.locked():
            raise AttemptInProgressError("A generation attempt is already running")

        async with self._lock:
            attempt = GenerationAttempt()
            self.last_attempt = attempt
            try:
                return await self._run_generate(request, attempt, on_progress)
            except StudioError as e:
                self._fail(attempt, e)
                raise
            except Exception as e:
                error = GenerationError(f"Unexpected failure during generation: {e!r}")
                self._fail(attempt, error)
                raise error from e

    async def _run_generate(self, request: SceneRequest, attempt: GenerationAttempt, on_progress) -> GeneratedArtifact:
        self._transition(attempt, AttemptState.VALIDATING, MSG_VALIDATING, on_progress)
        self._validate(request)

        identification = IdentificationResult(label=FALLBACK_MODEL_LABEL, identified=False)
        if isinstance(request.car_source, UploadedCar) and self.settings.identify_model:
            self._transition(attempt, AttemptState.IDENTIFYING_MODEL, MSG_IDENTIFYING, on_progress)
            attempt.calls.append(CALL_IDENTIFY)
            identification = await self.identify_model(request)
            if identification.error:
                attempt.warnings.append(f"No se pudo identificar el modelo del coche: {identification.error}")
        elif isinstance(request.car_source, CarDescription):
            identification = await self.identify_model(request)

        background = await self._resolve_background(request, attempt, on_progress)

        prompt = compose(
            request,
            background=background,
            logo=self._logo,
            preset_background_filename=self.settings.preset_background_filename,
        )
        logger.debug(f"Composed prompt ({', '.join(prompt.attachment_roles)}): {prompt.instruction}")

        message = MSG_GENERATING_EXTERIOR if request.scene_kind is SceneKind.EXTERIOR else MSG_GENERATING_INTERIOR
        self._transition(attempt, AttemptState.GENERATING, message, on_progress)
        attempt.calls.append(CALL_GENERATE)
        image = await self._call_model(
            self.gemini.generate_image([prompt.instruction, *prompt.attachments], model=self.settings.image_model),
            "Image generation",
        )

        artifact = GeneratedArtifact(
            image=image,
            identified_model=identification.label,
            identified=identification.identified,
            scene_kind=request.scene_kind,
            prompt=prompt.instruction,
        )
        attempt.artifact = artifact
        self._transition(attempt, AttemptState.DONE, MSG_DONE, on_progress)
        return artifact

    async def regenerate(
        self,
        previous: GeneratedArtifact,
        request: SceneRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GeneratedArtifact:
        """
        Re-run an exterior generation with the previous result attached.

        The previous artifact is never modified; on failure the caller keeps
        displaying it and the error propagates.

        Raises:
            AttemptInProgressError: If another attempt is still running
            ValidationError: For interior scenes or incomplete requests
            plus the same generation errors as generate()
        """
        if self._lock.locked():
            raise AttemptInProgressError("A generation attempt is already running")

        async with self._lock:
            attempt = GenerationAttempt(state=AttemptState.DONE, artifact=previous)
            self.last_attempt = attempt
            try:
                return await self._run_regenerate(previous, request, attempt, on_progress)
            except StudioError as e:
                self._fail(attempt, e)
                # previous result stays the displayed one
                attempt.artifact = previous
                raise
            except Exception as e:
                error = GenerationError(f"Unexpected failure during regeneration: {e!r}")
                self._fail(attempt, error)
                attempt.artifact = previous
                raise error from e

    async def _run_regenerate(
        self,
        previous: GeneratedArtifact,
        request: SceneRequest,
        attempt: GenerationAttempt,
        on_progress,
    ) -> GeneratedArtifact:
        if request.scene_kind is not SceneKind.EXTERIOR or previous.scene_kind is not SceneKind.EXTERIOR:
            raise ValidationError(
                "Regeneration is only available for exterior scenes",
                fields=["scene_kind"],
                user_message="La regeneración solo está disponible para escenas exteriores.",
            )
        self._validate(request)

        background = await self._resolve_background(request, attempt, on_progress)
        base = compose(
            request,
            background=background,
            logo=self._logo,
            preset_background_filename=self.settings.preset_background_filename,
        )
        prompt = regeneration_prompt(base, previous.image)

        self._transition(attempt, AttemptState.REGENERATING, MSG_REGENERATING, on_progress)
        attempt.calls.append(CALL_REGENERATE)
        image = await self._call_model(
            self.gemini.generate_image([prompt.instruction, *prompt.attachments], model=self.settings.image_model),
            "Image regeneration",
        )

        artifact = GeneratedArtifact(
            image=image,
            identified_model=previous.identified_model,
            identified=previous.identified,
            scene_kind=previous.scene_kind,
            prompt=prompt.instruction,
        )
        attempt.artifact = artifact
        self._transition(attempt, AttemptState.DONE, MSG_DONE, on_progress)
        return artifact


def describe_error(error: Exception) -> str:
    """Single user-facing message for any error raised by an attempt."""
    if isinstance(error, StudioError):
        return error.user_message
    return f"Error: {error}"

