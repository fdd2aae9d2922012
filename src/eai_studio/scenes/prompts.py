"""Prompt composition for scene generation.

Instruction text is assembled from small fragments keyed by scenario and
option enums. Attachment order per scenario lives in ATTACHMENT_ORDER; the
ordinal references inside the text ("la primera imagen", ...) are derived from
that table so text and attachments cannot drift apart.

Usage:
    from eai_studio.scenes.prompts import compose

    prompt = compose(request)
    parts = [prompt.instruction, *prompt.attachments]
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from eai_studio.config import PRESET_BACKGROUND_FILENAME
from eai_studio.exceptions import ValidationError
from eai_studio.scenes.models import (
    CarDescription,
    CarView,
    ComposedPrompt,
    EncodedImage,
    InteriorView,
    SceneKind,
    SceneRequest,
    UploadedBackground,
    UploadedCar,
    validation_message,
)

ROLE_BACKGROUND = "background"
ROLE_CAR = "car"
ROLE_LOGO = "logo"
ROLE_PREVIOUS = "previous"

UNKNOWN_MODEL_ANSWER = "desconocido"


class PromptScenario(str, Enum):
    """Distinct prompt policies."""

    EXTERIOR_UPLOAD = "exterior_upload"
    EXTERIOR_DESCRIPTION = "exterior_description"
    INTERIOR_GENERAL = "interior_general"
    INTERIOR_DETAIL = "interior_detail"


# Order in which images are sent with the instruction. Roles that are absent
# for a given request (e.g. no logo configured) are skipped.
ATTACHMENT_ORDER: Dict[PromptScenario, Tuple[str, ...]] = {
    PromptScenario.EXTERIOR_UPLOAD: (ROLE_BACKGROUND, ROLE_CAR),
    PromptScenario.EXTERIOR_DESCRIPTION: (ROLE_BACKGROUND, ROLE_LOGO),
    PromptScenario.INTERIOR_GENERAL: (ROLE_CAR,),
    PromptScenario.INTERIOR_DETAIL: (ROLE_CAR,),
}

ORDINALS = ("primera", "segunda", "tercera", "cuarta")

# =============================================================================
# EXTERIOR FRAGMENTS
# =============================================================================

EXTERIOR_UPLOAD_SUBJECT = (
    "Añade el coche de la {car} imagen a la {background} imagen, que es la escena de fondo. "
    "El coche debe colocarse en la plataforma giratoria central."
)

EXTERIOR_DESCRIPTION_SUBJECT = (
    "Genera un {make} {model} del año {year} de color {color} y colócalo en la {background} imagen, "
    "que es la escena de fondo. El coche debe ser fiel al diseño real de ese modelo y año, "
    "y debe colocarse en la plataforma giratoria central."
)

EXTERIOR_LOGO = (
    "La {logo} imagen es el logotipo de World Cars: úsalo solo como referencia para el letrero "
    "del concesionario y no lo coloques sobre el coche."
)

PHOTOREALISM = (
    "Haz que la imagen final parezca una fotografía real de alta calidad, con iluminación, "
    "sombras y reflejos realistas."
)

EXTERIOR_PLACEMENT = (
    "Posiciona el coche de manera que su techo quede justo debajo del letrero \"World Cars\", "
    "y asegúrate de que el coche se vea grande y prominente en la escena."
)

POSE_FRAGMENTS: Dict[CarView, str] = {
    CarView.FRONT: (
        "Muestra el coche en una vista de tres cuartos delantera, con las ruedas delanteras "
        "giradas hacia la cámara."
    ),
    CarView.SIDE: (
        "Muestra el coche en un perfil lateral estricto, perfectamente paralelo a la cámara, "
        "con las cuatro ruedas rectas y visibles."
    ),
    CarView.REAR: (
        "Muestra el coche en una vista de tres cuartos trasera desde un ángulo bajo y dramático, "
        "destacando los pilotos traseros."
    ),
}

PLATE_LITERAL = "La matrícula del coche debe mostrar exactamente el texto \"{plate}\", legible y sin deformaciones."
PLATE_REPLICATE_OR_OMIT = (
    "Si la matrícula es visible en la foto original del coche, replícala fielmente; "
    "si no puedes replicarla perfectamente, genera el coche sin matrícula."
)
PLATE_OMIT = "Genera el coche sin matrícula."

SIGNAGE_PRESERVE = (
    "El letrero \"World Cars\" en la imagen de fondo debe permanecer como está en la imagen original; "
    "no lo cambies a un estilo de neón naranja."
)
SIGNAGE_NEON = (
    "Si alguna vez tienes que añadir un letrero o cartel de \"World Cars\", debe ser en estilo de neón naranja."
)

ADDITIONAL_INSTRUCTIONS = "Instrucciones adicionales: {text}"

# =============================================================================
# INTERIOR FRAGMENTS
# =============================================================================

INTERIOR_GENERAL = (
    "Dada la imagen del interior de un coche, genera una nueva imagen fotorrealista de calidad de estudio. "
    "El objetivo principal es eliminar por completo la vista del exterior a través de las ventanillas y el parabrisas. "
    "Reemplaza el fondo exterior con un fondo de estudio neutro y limpio, con un ligero desenfoque para mantener "
    "el enfoque en el interior del coche. Mejora la iluminación dentro del coche para resaltar los detalles del "
    "salpicadero, los asientos y el volante."
)

INTERIOR_DETAIL = (
    "Dada la foto de detalle del interior de un coche, genera una nueva imagen fotorrealista de calidad de estudio "
    "centrada en el mismo elemento. Realza la textura de los materiales (cuero, costuras, plásticos y metales) "
    "con una iluminación suave y uniforme. Si a través de alguna ventanilla se ve el exterior, sustitúyelo por "
    "un fondo de estudio neutro."
)

INTERIOR_CLEANING = (
    "Limpia el interior del coche eliminando cualquier objeto personal o desorden, como papeles, botellas u otros "
    "artículos que puedan estar en los asientos, especialmente en el asiento del copiloto, o en el salpicadero. "
    "Si el interior del coche original está sucio, con manchas en la tapicería o polvo, la imagen generada deberá "
    "mostrarlo completamente limpio, como si estuviera nuevo. El interior debe verse impecable y como si fuera de exposición."
)

INTERIOR_KEEP_FRAMING = (
    "Mantén exactamente el mismo ángulo de cámara, encuadre, distancia y perspectiva que la foto original. "
    "No reencuadres, no recortes, no amplíes ni cambies el punto de vista."
)

INTERIOR_EXTREME_CLEAN = (
    "Limpieza extrema: todos los plásticos negros, paneles, salpicadero y alfombrillas que se vean desgastados, "
    "descoloridos o grisáceos deben quedar de un color negro profundo, como recién salidos de fábrica."
)

INTERIOR_ODOMETER = (
    "El cuentakilómetros del cuadro de instrumentos debe mostrar exactamente {kilometers} km. "
    "Si el cuadro de instrumentos no es visible en la foto, no lo añadas."
)

INTERIOR_NO_WARNING_LIGHTS = (
    "No inventes testigos ni luces de advertencia en el cuadro de instrumentos que no estén en la imagen original."
)

INTERIOR_STUDIO_ONLY = (
    "El resultado final no debe mostrar nada del mundo exterior, solo el interior del coche como si estuviera "
    "en un estudio fotográfico profesional."
)

# =============================================================================
# IDENTIFICATION / REGENERATION
# =============================================================================

IDENTIFICATION_PROMPTS: Dict[SceneKind, str] = {
    SceneKind.EXTERIOR: (
        "Identifica la marca y el modelo del coche de esta imagen. Responde solo con la marca y el modelo, "
        "sin ninguna otra palabra, por ejemplo: Volkswagen Golf GTI. "
        f"Si no puedes identificarlo, responde: {UNKNOWN_MODEL_ANSWER}."
    ),
    SceneKind.INTERIOR: (
        "Identifica la marca y el modelo del coche a partir de esta foto de su interior (volante, salpicadero, "
        "logotipos). Responde solo con la marca y el modelo, por ejemplo: Seat León. "
        f"Si no puedes identificarlo, responde: {UNKNOWN_MODEL_ANSWER}."
    ),
}

REGENERATION_FIX = (
    "La {previous} imagen es un resultado anterior de esta misma petición en el que el coche no quedó bien "
    "integrado. Vuelve a generar la escena corrigiendo la escala y la posición del coche: debe tener un tamaño "
    "realista respecto al entorno, apoyarse con las cuatro ruedas sobre la plataforma y respetar la perspectiva "
    "del fondo. Mantén todo lo que sí estaba bien en el resultado anterior."
)


def _ordinal(roles: Tuple[str, ...], role: str) -> str:
    return ORDINALS[roles.index(role)]


def scenario_for(request: SceneRequest) -> PromptScenario:
    """Pick the prompt policy for a request."""
    if request.scene_kind is SceneKind.INTERIOR:
        if request.options.interior_view is InteriorView.DETAIL:
            return PromptScenario.INTERIOR_DETAIL
        return PromptScenario.INTERIOR_GENERAL
    if isinstance(request.car_source, CarDescription):
        return PromptScenario.EXTERIOR_DESCRIPTION
    return PromptScenario.EXTERIOR_UPLOAD


def _plate_fragment(request: SceneRequest) -> str:
    plate = request.options.license_plate
    if plate:
        return PLATE_LITERAL.format(plate=plate)
    if isinstance(request.car_source, CarDescription):
        return PLATE_OMIT
    return PLATE_REPLICATE_OR_OMIT


def _signage_fragment(background: EncodedImage, preset_background_filename: str) -> str:
    if background.filename and background.filename == preset_background_filename:
        return SIGNAGE_PRESERVE
    return SIGNAGE_NEON


def _exterior_instruction(
    request: SceneRequest,
    roles: Tuple[str, ...],
    background: EncodedImage,
    preset_background_filename: str,
) -> List[str]:
    if isinstance(request.car_source, CarDescription):
        car = request.car_source
        fragments = [
            EXTERIOR_DESCRIPTION_SUBJECT.format(
                make=car.make,
                model=car.model,
                year=car.year,
                color=car.color,
                background=_ordinal(roles, ROLE_BACKGROUND),
            )
        ]
        if ROLE_LOGO in roles:
            fragments.append(EXTERIOR_LOGO.format(logo=_ordinal(roles, ROLE_LOGO)))
    else:
        fragments = [
            EXTERIOR_UPLOAD_SUBJECT.format(
                car=_ordinal(roles, ROLE_CAR),
                background=_ordinal(roles, ROLE_BACKGROUND),
            )
        ]

    fragments += [
        PHOTOREALISM,
        EXTERIOR_PLACEMENT,
        POSE_FRAGMENTS[request.options.car_view],
        _plate_fragment(request),
        _signage_fragment(background, preset_background_filename),
    ]
    return fragments


def _interior_instruction(request: SceneRequest, scenario: PromptScenario) -> List[str]:
    options = request.options
    fragments = [
        INTERIOR_DETAIL if scenario is PromptScenario.INTERIOR_DETAIL else INTERIOR_GENERAL,
        INTERIOR_CLEANING,
        INTERIOR_KEEP_FRAMING,
    ]
    if options.extreme_clean:
        fragments.append(INTERIOR_EXTREME_CLEAN)
    if options.kilometers:
        fragments.append(INTERIOR_ODOMETER.format(kilometers=options.kilometers))
    fragments += [INTERIOR_NO_WARNING_LIGHTS, INTERIOR_STUDIO_ONLY]
    return fragments


def compose(
    request: SceneRequest,
    background: Optional[EncodedImage] = None,
    logo: Optional[EncodedImage] = None,
    preset_background_filename: str = PRESET_BACKGROUND_FILENAME,
) -> ComposedPrompt:
    """
    Build the instruction text and ordered attachments for a request.

    Pure: the same arguments always give the same text and order.

    Args:
        request: Complete scene request
        background: Already-downloaded background image; required when the
            request's background is a URL, ignored for uploaded backgrounds
        logo: Optional logo asset for description-based exterior scenes
        preset_background_filename: Filename of the studio's own showroom
            background, whose signage must be preserved

    Returns:
        ComposedPrompt with instruction, attachments and their roles

    Raises:
        ValidationError: If the request is incomplete or a URL background was not resolved
    """
    missing = request.missing_fields()
    if missing:
        raise ValidationError(
            f"Scene request is missing: {', '.join(missing)}",
            fields=missing,
            user_message=validation_message(missing),
        )

    scenario = scenario_for(request)
    images: Dict[str, EncodedImage] = {}

    if isinstance(request.car_source, UploadedCar):
        images[ROLE_CAR] = request.car_source.image
    if request.scene_kind is SceneKind.EXTERIOR:
        source = request.background
        if isinstance(source, UploadedBackground):
            background = source.image
        if background is None:
            raise ValidationError(
                "Background URL must be downloaded before composing the prompt",
                fields=["background"],
                user_message=validation_message(["background"]),
            )
        images[ROLE_BACKGROUND] = background
        if logo is not None and scenario is PromptScenario.EXTERIOR_DESCRIPTION:
            images[ROLE_LOGO] = logo

    roles = tuple(role for role in ATTACHMENT_ORDER[scenario] if role in images)

    if request.scene_kind is SceneKind.EXTERIOR:
        fragments = _exterior_instruction(request, roles, images[ROLE_BACKGROUND], preset_background_filename)
    else:
        fragments = _interior_instruction(request, scenario)

    if request.options.additional_instructions:
        fragments.append(ADDITIONAL_INSTRUCTIONS.format(text=request.options.additional_instructions))

    return ComposedPrompt(
        instruction=" ".join(fragments),
        attachments=tuple(images[role] for role in roles),
        attachment_roles=roles,
    )


def identification_prompt(scene_kind: SceneKind) -> str:
    """Instruction for the identification-only call."""
    return IDENTIFICATION_PROMPTS[scene_kind]


def parse_identification(answer: str) -> Optional[str]:
    """Clean a model answer into a make/model label; None when unidentified."""
    line = answer.strip().splitlines()[0] if answer.strip() else ""
    label = line.strip().strip("\"'`*.").strip()
    if not label or label.lower().startswith(UNKNOWN_MODEL_ANSWER):
        return None
    return label


def regeneration_prompt(base: ComposedPrompt, previous: EncodedImage) -> ComposedPrompt:
    """Extend a composed prompt with the previous result and a scale/position fix."""
    roles = base.attachment_roles + (ROLE_PREVIOUS,)
    fix = REGENERATION_FIX.format(previous=_ordinal(roles, ROLE_PREVIOUS))
    return ComposedPrompt(
        instruction=f"{base.instruction} {fix}",
        attachments=base.attachments + (previous,),
        attachment_roles=roles,
    )
