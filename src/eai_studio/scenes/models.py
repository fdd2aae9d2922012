"""Data models for scene generation."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eai_studio.util.image_codec import EncodedImage


class SceneKind(str, Enum):
    """Whether the composite is a car in a background or a cabin-only shot."""

    EXTERIOR = "exterior"
    INTERIOR = "interior"


class CarView(str, Enum):
    """Camera perspective for exterior scenes."""

    FRONT = "front"
    SIDE = "side"
    REAR = "rear"


class InteriorView(str, Enum):
    """Framing of an interior shot."""

    GENERAL = "general"
    DETAIL = "detail"


class AttemptState(str, Enum):
    """States of one generation attempt."""

    IDLE = "idle"
    VALIDATING = "validating"
    IDENTIFYING_MODEL = "identifying_model"
    AWAITING_BACKGROUND = "awaiting_background"
    GENERATING = "generating"
    REGENERATING = "regenerating"
    DONE = "done"
    FAILED = "failed"


class UploadedCar(BaseModel):
    """Car supplied as a photo."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["upload"] = "upload"
    image: EncodedImage


class CarDescription(BaseModel):
    """Car described in text only."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["description"] = "description"
    make: str
    model: str
    year: str
    color: str

    @field_validator('make', 'model', 'year', 'color')
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Ensure every description field is filled in."""
        if not v or not v.strip():
            raise ValueError("Car description fields cannot be empty")
        return v.strip()

    @property
    def label(self) -> str:
        """Human label, e.g. "Volkswagen Golf GTI 2023"."""
        return f"{self.make} {self.model} {self.year}"


CarSource = Annotated[Union[UploadedCar, CarDescription], Field(discriminator="kind")]


class UploadedBackground(BaseModel):
    """Background supplied as a file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["upload"] = "upload"
    image: EncodedImage


class RemoteBackground(BaseModel):
    """Background to be downloaded from a URL."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str


BackgroundSource = Union[UploadedBackground, RemoteBackground]

# User-facing text for each field SceneRequest.missing_fields() can report
FIELD_MESSAGES = {
    "car_image": "Por favor, sube una imagen del coche.",
    "car_source": "Por favor, sube una imagen del coche o describe el modelo.",
    "background": "Por favor, proporciona un fondo (archivo o URL).",
}


def validation_message(fields) -> str:
    """Compose the user-facing message for missing fields."""
    return " ".join(FIELD_MESSAGES.get(field, f"Falta el campo {field}.") for field in fields)


class SceneOptions(BaseModel):
    """Optional toggles for a scene request."""

    model_config = ConfigDict(frozen=True)

    license_plate: Optional[str] = None
    extreme_clean: bool = False
    kilometers: Optional[str] = None
    additional_instructions: Optional[str] = None
    car_view: CarView = CarView.FRONT
    interior_view: InteriorView = InteriorView.GENERAL

    @field_validator('license_plate', 'additional_instructions', 'kilometers')
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank strings as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator('kilometers')
    @classmethod
    def validate_kilometers(cls, v: Optional[str]) -> Optional[str]:
        """Kilometers must look like a number ("95000", "95.000", "95 000")."""
        if v is None:
            return v
        digits = v.replace(".", "").replace(",", "").replace(" ", "")
        if not digits.isdigit():
            raise ValueError(f"Kilometers must be numeric: {v!r}")
        return v


class SceneRequest(BaseModel):
    """Everything needed for one generation attempt.

    Both background inputs may be set (the form keeps the last one typed);
    ``background`` resolves which one is used.
    """

    model_config = ConfigDict(frozen=True)

    scene_kind: SceneKind
    car_source: Optional[CarSource] = None
    background_file: Optional[UploadedBackground] = None
    background_url: Optional[str] = None
    background_method: Optional[Literal["upload", "url"]] = None
    options: SceneOptions = SceneOptions()

    @field_validator('background_url')
    @classmethod
    def blank_url_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank URL as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @property
    def background(self) -> Optional[BackgroundSource]:
        """Effective background source; the method selector decides, else the file wins."""
        if self.scene_kind is not SceneKind.EXTERIOR:
            return None
        if self.background_method == "url":
            return RemoteBackground(url=self.background_url) if self.background_url else None
        if self.background_method == "upload":
            return self.background_file
        if self.background_file is not None:
            return self.background_file
        if self.background_url:
            return RemoteBackground(url=self.background_url)
        return None

    def missing_fields(self) -> List[str]:
        """Names of required fields that are absent for this scene kind."""
        missing = []
        if self.scene_kind is SceneKind.INTERIOR:
            if not isinstance(self.car_source, UploadedCar):
                missing.append("car_image")
        else:
            if self.car_source is None:
                missing.append("car_source")
            if self.background is None:
                missing.append("background")
        return missing

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()


class ComposedPrompt(BaseModel):
    """Instruction text plus ordered attachments for one model call."""

    model_config = ConfigDict(frozen=True)

    instruction: str
    attachments: Tuple[EncodedImage, ...] = ()
    attachment_roles: Tuple[str, ...] = ()  # e.g. ("background", "car")


class IdentificationResult(BaseModel):
    """Outcome of the optional identification step."""

    model_config = ConfigDict(frozen=True)

    label: str
    identified: bool
    error: Optional[str] = None


class GeneratedArtifact(BaseModel):
    """Raw model output plus derived metadata."""

    model_config = ConfigDict(frozen=True)

    image: EncodedImage
    identified_model: str
    identified: bool = False
    scene_kind: SceneKind
    prompt: str = ""


class AnnotatedArtifact(BaseModel):
    """Artifact with mileage/disclaimer overlay and a download filename."""

    model_config = ConfigDict(frozen=True)

    image: EncodedImage
    filename: str
    annotated: bool
    source: GeneratedArtifact


class GenerationAttempt(BaseModel):
    """Runtime record of one orchestrator run."""

    state: AttemptState = AttemptState.IDLE
    progress: List[str] = []
    calls: List[str] = []
    warnings: List[str] = []
    artifact: Optional[GeneratedArtifact] = None
    error: Optional[str] = None

    @property
    def progress_message(self) -> str:
        """Most recent progress message ("" before the first one)."""
        return self.progress[-1] if self.progress else ""
