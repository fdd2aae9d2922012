"""Centralized exception hierarchy for E•AI Studio.

Every error carries a ``user_message`` in the language of the studio UI; the
plain ``str(err)`` is the developer-facing message used in logs.

Usage:
    from eai_studio.exceptions import ValidationError, EmptyResultError

    raise ValidationError("Missing background", fields=["background"])
    raise EmptyResultError()
"""

from typing import Iterable, Optional

CORS_HINT = (
    "Asegúrate de que la URL sea una imagen directa y accesible (sin problemas de CORS)."
)


class StudioError(Exception):
    """Base exception for all E•AI Studio errors."""

    default_user_message = "Ocurrió un error desconocido."

    def __init__(self, message: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message or user_message or self.default_user_message)
        self.user_message = user_message or self.default_user_message


class ConfigurationError(StudioError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Missing API key
        - Unreadable logo or font path
    """

    default_user_message = "La aplicación no está configurada correctamente."


class ValidationError(StudioError):
    """Raised when a scene request is incomplete or invalid.

    Always raised before any network call. ``fields`` lists the offending
    request fields.
    """

    default_user_message = "Faltan datos en el formulario o alguno no es válido."

    def __init__(
        self,
        message: Optional[str] = None,
        fields: Iterable[str] = (),
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message)
        self.fields = list(fields)


class ImageCodecError(StudioError):
    """Raised when an image source cannot be turned into an encoded image."""

    default_user_message = "No se pudo procesar la imagen."


class ReadError(ImageCodecError):
    """Raised when local bytes cannot be decoded as an image."""

    default_user_message = "Error al leer el archivo de imagen."


class FetchError(ImageCodecError):
    """Raised when a remote image cannot be downloaded.

    Examples:
        - DNS or connection failure
        - Non-2xx HTTP status
        - Access restricted by the remote host
    """

    default_user_message = f"No se pudo descargar la imagen de fondo. {CORS_HINT}"


class InvalidContentError(ImageCodecError):
    """Raised when a downloaded resource is not declared as an image."""

    default_user_message = f"La URL no apunta a una imagen. {CORS_HINT}"


class IdentificationError(StudioError):
    """Raised by the optional model identification step.

    Never surfaced as a blocking error; the orchestrator falls back to a
    generic label.
    """

    default_user_message = "No se pudo identificar el modelo del coche."


class GenerationError(StudioError):
    """Raised when a required image generation call fails."""

    default_user_message = "Error al generar la escena del coche con el modelo de IA. Inténtalo de nuevo."


class EmptyResultError(GenerationError):
    """Raised when the model response carries no image part."""

    default_user_message = "El modelo no devolvió una imagen. Por favor, inténtalo de nuevo."


class ModelInvocationError(GenerationError):
    """Raised for transport, authentication or safety-filter failures."""

    safety_user_message = (
        "El modelo rechazó la solicitud por sus filtros de seguridad. "
        "Prueba con otras imágenes o instrucciones."
    )

    def __init__(
        self,
        message: Optional[str] = None,
        safety_blocked: bool = False,
        user_message: Optional[str] = None,
    ):
        if safety_blocked and user_message is None:
            user_message = self.safety_user_message
        super().__init__(message, user_message or self.default_user_message)
        self.safety_blocked = safety_blocked


class GenerationTimeoutError(GenerationError, TimeoutError):
    """Raised when a model call exceeds the configured timeout."""

    default_user_message = "El modelo tardó demasiado en responder. Por favor, inténtalo de nuevo."


class AttemptInProgressError(StudioError):
    """Raised when a generation is requested while another is still running."""

    default_user_message = "Ya hay una generación en curso. Espera a que termine."
