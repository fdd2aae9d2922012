"""Scene composition, generation and annotation."""

from .models import (
    AnnotatedArtifact,
    CarDescription,
    CarView,
    ComposedPrompt,
    EncodedImage,
    GeneratedArtifact,
    GenerationAttempt,
    InteriorView,
    SceneKind,
    SceneOptions,
    SceneRequest,
    UploadedBackground,
    UploadedCar,
)
from .prompts import compose
from .orchestrate import SceneGenerator
from .annotate import annotate, download_filename

__all__ = [
    'AnnotatedArtifact',
    'CarDescription',
    'CarView',
    'ComposedPrompt',
    'EncodedImage',
    'GeneratedArtifact',
    'GenerationAttempt',
    'InteriorView',
    'SceneKind',
    'SceneOptions',
    'SceneRequest',
    'UploadedBackground',
    'UploadedCar',
    'compose',
    'SceneGenerator',
    'annotate',
    'download_filename',
]
