"""Scene generation endpoints."""

import asyncio
import logging
from collections import OrderedDict
from functools import lru_cache
from typing import Callable, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from pydantic import BaseModel, ValidationError as PydanticValidationError

from eai_studio.config import Settings
from eai_studio.exceptions import (
    AttemptInProgressError,
    GenerationError,
    GenerationTimeoutError,
    ImageCodecError,
    StudioError,
    ValidationError,
)
from eai_studio.scenes.annotate import annotate as annotate_artifact, download_filename
from eai_studio.scenes.models import (
    CarDescription,
    CarView,
    GeneratedArtifact,
    GenerationAttempt,
    InteriorView,
    SceneKind,
    SceneOptions,
    SceneRequest,
    UploadedBackground,
    UploadedCar,
)
from eai_studio.scenes.orchestrate import FALLBACK_MODEL_LABEL, SceneGenerator
from eai_studio.util.gemini import GeminiAPI
from eai_studio.util.image_codec import EncodedImage, encode_local_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scenes", tags=["scenes"])

DEFAULT_SESSION = "default"


class SceneResponse(BaseModel):
    """Response body for generate/regenerate."""
    success: bool = True
    image_base64: str
    mime_type: str
    filename: str
    identified_model: str
    identified: bool
    annotated: bool
    raw_image_base64: str  # unannotated result, used for regeneration
    progress: List[str] = []
    warnings: List[str] = []


def status_for(error: StudioError) -> int:
    """HTTP status for a studio error."""
    if isinstance(error, (ValidationError, ImageCodecError)):
        return 400
    if isinstance(error, AttemptInProgressError):
        return 409
    if isinstance(error, GenerationTimeoutError):
        return 504
    if isinstance(error, GenerationError):
        return 502
    return 500


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings.from_env()


@lru_cache
def get_gemini() -> GeminiAPI:
    """Process-wide Gemini client, created on first use."""
    return GeminiAPI(model_name=get_settings().image_model)


class GeneratorRegistry:
    """Per-session SceneGenerators, bounded by least-recent use.

    When full, the least recently used idle generator is dropped. Busy
    generators are never evicted, so the registry may briefly exceed
    ``max_size`` while many attempts run at once.
    """

    def __init__(self, factory: Callable[[], SceneGenerator], max_size: int):
        self._factory = factory
        self.max_size = max(1, max_size)
        self._generators: "OrderedDict[str, SceneGenerator]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._generators)

    def __contains__(self, session: str) -> bool:
        return session in self._generators

    def get(self, session: str) -> SceneGenerator:
        generator = self._generators.get(session)
        if generator is not None:
            self._generators.move_to_end(session)
            return generator

        self._evict(self.max_size - 1)
        generator = self._factory()
        self._generators[session] = generator
        return generator

    def _evict(self, keep: int) -> None:
        for session in list(self._generators):
            if len(self._generators) <= keep:
                break
            if not self._generators[session].is_busy:
                del self._generators[session]
                logger.debug(f"Evicted idle generator for session {session}")


@lru_cache
def get_registry() -> GeneratorRegistry:
    """Process-wide session registry."""
    settings = get_settings()
    return GeneratorRegistry(
        lambda: SceneGenerator(get_gemini(), settings=settings),
        max_size=settings.max_sessions,
    )


def get_generator(x_session_id: Optional[str] = Header(default=None)) -> SceneGenerator:
    """One SceneGenerator per client session (X-Session-ID header)."""
    return get_registry().get(x_session_id or DEFAULT_SESSION)


async def _read_upload(upload: Optional[UploadFile]) -> Optional[EncodedImage]:
    if upload is None or not upload.filename:
        return None
    data = await upload.read()
    if not data:
        return None
    return encode_local_file(data, mime_type=upload.content_type, filename=upload.filename)


def _build_request(
    scene_kind: SceneKind,
    car: Optional[EncodedImage],
    make: Optional[str],
    model: Optional[str],
    year: Optional[str],
    color: Optional[str],
    background: Optional[EncodedImage],
    background_url: Optional[str],
    background_method: Optional[str],
    options: Dict,
) -> SceneRequest:
    """Assemble a SceneRequest from form values.

    Raises:
        ValidationError: If a field has an invalid value
    """
    try:
        if car is not None:
            car_source = UploadedCar(image=car)
        elif any((make, model, year, color)):
            car_source = CarDescription(make=make or "", model=model or "", year=year or "", color=color or "")
        else:
            car_source = None

        return SceneRequest(
            scene_kind=scene_kind,
            car_source=car_source,
            background_file=UploadedBackground(image=background) if background is not None else None,
            background_url=background_url,
            background_method=background_method or None,
            options=SceneOptions(**options),
        )
    except PydanticValidationError as e:
        fields = [".".join(str(loc) for loc in err["loc"]) for err in e.errors()]
        raise ValidationError(
            f"Invalid scene request: {e}",
            fields=fields,
            user_message="Revisa los datos del formulario: " + "; ".join(err["msg"] for err in e.errors()),
        ) from e


async def _respond(
    artifact: GeneratedArtifact,
    attempt: GenerationAttempt,
    kilometers: Optional[str],
    annotate: bool,
    settings: Settings,
) -> SceneResponse:
    if annotate:
        result = await asyncio.to_thread(annotate_artifact, artifact, kilometers, settings.font_path)
        image, filename, annotated = result.image, result.filename, result.annotated
    else:
        label = artifact.identified_model if artifact.identified else None
        image, filename, annotated = artifact.image, download_filename(label, artifact.image.extension), False

    return SceneResponse(
        image_base64=image.to_base64(),
        mime_type=image.mime_type,
        filename=filename,
        identified_model=artifact.identified_model,
        identified=artifact.identified,
        annotated=annotated,
        raw_image_base64=artifact.image.to_base64(),
        progress=list(attempt.progress),
        warnings=list(attempt.warnings),
    )


@router.post("/generate", response_model=SceneResponse)
async def generate_scene(
    scene_kind: SceneKind = Form(SceneKind.EXTERIOR),
    car_image: Optional[UploadFile] = File(None),
    make: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    background_image: Optional[UploadFile] = File(None),
    background_url: Optional[str] = Form(None),
    background_method: Optional[Literal["upload", "url"]] = Form(None),
    license_plate: Optional[str] = Form(None),
    extreme_clean: bool = Form(False),
    kilometers: Optional[str] = Form(None),
    additional_instructions: Optional[str] = Form(None),
    car_view: CarView = Form(CarView.FRONT),
    interior_view: InteriorView = Form(InteriorView.GENERAL),
    annotate: bool = Form(True),
    generator: SceneGenerator = Depends(get_generator),
):
    """
    Generate an exterior or interior scene.

    Returns:
        SceneResponse with the (annotated) image as base64

    Raises:
        400: Missing/invalid fields, background URL unusable
        409: Another generation is running for this session
        502: Model failed or returned no image
        504: Model timed out
    """
    request = _build_request(
        scene_kind,
        await _read_upload(car_image),
        make, model, year, color,
        await _read_upload(background_image),
        background_url,
        background_method,
        {
            "license_plate": license_plate,
            "extreme_clean": extreme_clean,
            "kilometers": kilometers,
            "additional_instructions": additional_instructions,
            "car_view": car_view,
            "interior_view": interior_view,
        },
    )

    artifact = await generator.generate(request)
    return await _respond(artifact, generator.last_attempt, request.options.kilometers, annotate, generator.settings)


@router.post("/regenerate", response_model=SceneResponse)
async def regenerate_scene(
    previous_image: UploadFile = File(...),
    previous_identified_model: Optional[str] = Form(None),
    car_image: Optional[UploadFile] = File(None),
    make: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    color: Optional[str] = Form(None),
    background_image: Optional[UploadFile] = File(None),
    background_url: Optional[str] = Form(None),
    background_method: Optional[Literal["upload", "url"]] = Form(None),
    license_plate: Optional[str] = Form(None),
    kilometers: Optional[str] = Form(None),
    additional_instructions: Optional[str] = Form(None),
    car_view: CarView = Form(CarView.FRONT),
    annotate: bool = Form(True),
    generator: SceneGenerator = Depends(get_generator),
):
    """
    Regenerate an exterior scene, correcting scale and position.

    The previous (unannotated) result is sent back as ``previous_image``.
    """
    previous = await _read_upload(previous_image)
    if previous is None:
        raise ValidationError("previous_image is empty", fields=["previous_image"],
                              user_message="Falta la imagen generada anteriormente.")

    request = _build_request(
        SceneKind.EXTERIOR,
        await _read_upload(car_image),
        make, model, year, color,
        await _read_upload(background_image),
        background_url,
        background_method,
        {
            "license_plate": license_plate,
            "kilometers": kilometers,
            "additional_instructions": additional_instructions,
            "car_view": car_view,
        },
    )
    previous_artifact = GeneratedArtifact(
        image=previous,
        identified_model=previous_identified_model or FALLBACK_MODEL_LABEL,
        identified=bool(previous_identified_model),
        scene_kind=SceneKind.EXTERIOR,
    )

    artifact = await generator.regenerate(previous_artifact, request)
    return await _respond(artifact, generator.last_attempt, request.options.kilometers, annotate, generator.settings)
