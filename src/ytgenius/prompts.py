"""
Prompt assembly for background and thumbnail generation.

A request is an ordered list of text and image parts. The provider turns it
into SDK contents; nothing here talks to the network.
"""

from __future__ import annotations

from dataclasses import dataclass

from ytgenius.errors import GenerationInputError, InvalidInputError

ASPECT_RATIOS = ("16:9", "9:16", "1:1")
MAX_REFERENCE_IMAGES = 5

BACKGROUND_SYSTEM_PROMPT = (
    "You are a professional graphic designer specializing in creating stunning, high-quality background "
    "images for YouTube videos. Your goal is to create a visually appealing, non-distracting, and thematically "
    "appropriate background that enhances the main content of the video. Analyze the user's request carefully. "
    "Generate a high-resolution background image suitable for a {aspect_ratio} aspect ratio. The image should be "
    "beautiful and engaging but subtle enough not to overpower a presenter or on-screen text."
)

THUMBNAIL_HEADER = (
    "You are a world-class YouTube thumbnail designer. Your task is to create a visually stunning, high-impact "
    "thumbnail that maximizes click-through rate (CTR).\n"
    "\n"
    "Analyze the user's request, considering the following principles of great thumbnail design:\n"
    "1.  **Clarity and Readability:** Use bold, easy-to-read fonts. Keep text minimal and impactful.\n"
    "2.  **Emotional Impact:** Convey a strong emotion (e.g., surprise, curiosity, excitement) through imagery "
    "and composition.\n"
    "3.  **Visual Hierarchy:** Guide the viewer's eye to the most important elements (usually a face, a key "
    "object, or text).\n"
    "4.  **Brand Consistency:** If a style or reference image is provided, maintain that visual identity.\n"
    "5.  **Contrast and Color:** Use vibrant, contrasting colors to make the thumbnail pop."
)

THUMBNAIL_BASE_IMAGE = (
    "Use the following image as a base for your design. You can modify it, enhance it, or use it as inspiration."
)
THUMBNAIL_FOOTER = (
    "Generate a compelling thumbnail with a {aspect_ratio} aspect ratio. Ensure it's eye-catching even at small sizes."
)

REFERENCES_INTRO = (
    "Use the following additional reference images to keep the style and visual identity consistent. "
    "Do not copy them verbatim."
)
CHARACTER_INTRO = (
    'The next image is a reference for the character "{name}". Keep their face, hair, clothing and overall '
    "appearance consistent with it wherever they appear."
)


@dataclass(frozen=True)
class ImageInput:
    content: bytes
    mime_type: str
    label: str | None = None


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    content: bytes
    mime_type: str


Part = TextPart | ImagePart


@dataclass(frozen=True)
class GenerationRequest:
    kind: str  # background|thumbnail
    aspect_ratio: str
    parts: list[Part]
    user_prompt: str

    @property
    def image_count(self) -> int:
        return sum(1 for p in self.parts if isinstance(p, ImagePart))

    def prompt_text(self) -> str:
        """Text parts joined, for logging and for recording what was sent."""
        return "\n\n".join(p.text for p in self.parts if isinstance(p, TextPart))


def validate_aspect_ratio(aspect_ratio: str) -> str:
    ratio = (aspect_ratio or "").strip()
    if ratio not in ASPECT_RATIOS:
        raise InvalidInputError(f"aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")
    return ratio


def _clean_prompt(prompt: str | None) -> str:
    return (prompt or "").strip()


def _check_image_budget(count: int) -> None:
    if count > MAX_REFERENCE_IMAGES:
        raise GenerationInputError(
            f"at most {MAX_REFERENCE_IMAGES} images can be sent per request (got {count})"
        )


def _reference_parts(references: list[ImageInput], characters: list[ImageInput]) -> list[Part]:
    parts: list[Part] = []
    if references:
        parts.append(TextPart(REFERENCES_INTRO))
        parts.extend(ImagePart(r.content, r.mime_type) for r in references)
    for c in characters:
        parts.append(TextPart(CHARACTER_INTRO.format(name=c.label or "character")))
        parts.append(ImagePart(c.content, c.mime_type))
    return parts


def build_background_request(
    prompt: str | None,
    image: ImageInput | None = None,
    aspect_ratio: str = "16:9",
    references: list[ImageInput] | None = None,
    characters: list[ImageInput] | None = None,
) -> GenerationRequest:
    ratio = validate_aspect_ratio(aspect_ratio)
    text = _clean_prompt(prompt)
    if not text and image is None:
        raise GenerationInputError("Either a prompt or an image must be provided.")

    references = list(references or [])
    characters = list(characters or [])
    _check_image_budget((1 if image else 0) + len(references) + len(characters))

    parts: list[Part] = [TextPart(BACKGROUND_SYSTEM_PROMPT.format(aspect_ratio=ratio))]
    if image is not None:
        parts.append(ImagePart(image.content, image.mime_type))
    if text:
        parts.append(TextPart(f"User's detailed request: {text}"))
    parts.extend(_reference_parts(references, characters))

    return GenerationRequest(kind="background", aspect_ratio=ratio, parts=parts, user_prompt=text)


def build_thumbnail_request(
    prompt: str | None,
    images: list[ImageInput] | None = None,
    aspect_ratio: str = "16:9",
    characters: list[ImageInput] | None = None,
) -> GenerationRequest:
    """
    The first of `images` is the base design; any others are passed along as
    style/identity references (uploads first, then selected preference assets).
    """
    ratio = validate_aspect_ratio(aspect_ratio)
    text = _clean_prompt(prompt)
    images = list(images or [])
    characters = list(characters or [])
    if not text and not images:
        raise GenerationInputError("Either a prompt or an image must be provided.")
    _check_image_budget(len(images) + len(characters))

    parts: list[Part] = [TextPart(THUMBNAIL_HEADER)]
    if images:
        base, references = images[0], images[1:]
        parts.append(TextPart(THUMBNAIL_BASE_IMAGE))
        parts.append(ImagePart(base.content, base.mime_type))
    else:
        references = []
    parts.extend(_reference_parts(references, characters))
    if text:
        parts.append(TextPart(f"Follow these specific instructions from the user: {text}"))
    parts.append(TextPart(THUMBNAIL_FOOTER.format(aspect_ratio=ratio)))

    return GenerationRequest(kind="thumbnail", aspect_ratio=ratio, parts=parts, user_prompt=text)
