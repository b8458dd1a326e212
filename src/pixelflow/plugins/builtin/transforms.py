"""Pillow-backed image transforms.

resize
    Scale an image to ``width`` x ``height``.  ``fit`` picks how the aspect
    ratio is handled: ``fill`` stretches, ``contain`` fits inside the box,
    ``cover`` fills the box and crops the overflow.
convert
    Re-encode an image to another format (PNG, JPEG, WebP).
"""

import logging
from io import BytesIO
from typing import Any

from PIL import Image, ImageOps

from pixelflow.core.models import Blob, CapabilityDescriptor, ParameterSpec
from pixelflow.plugins.base import TransformBase

logger = logging.getLogger(__name__)

# MIME type -> Pillow format name
FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
}


def open_image(blob: Blob) -> Image.Image:
    """Decode a Blob into a Pillow image."""
    image = Image.open(BytesIO(blob.data))
    image.load()
    return image


def encode_image(image: Image.Image, mime: str, **save_kwargs) -> Blob:
    """Encode a Pillow image into a Blob of the given MIME type."""
    fmt = FORMATS[mime]
    if fmt == "JPEG" and image.mode not in ("RGB", "L"):
        # JPEG has no alpha channel
        image = image.convert("RGB")

    buffer = BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return Blob(data=buffer.getvalue(), mime=mime, width=image.width, height=image.height)


class Resize(TransformBase):
    descriptor = CapabilityDescriptor(
        name="resize",
        kind="transform",
        description="Resize an image",
        category="Basic",
        parameters={
            "width": ParameterSpec(type="number", required=True, minimum=1, description="Target width"),
            "height": ParameterSpec(
                type="number", required=True, minimum=1, description="Target height"
            ),
            "fit": ParameterSpec(
                type="enum",
                choices=["fill", "contain", "cover"],
                default="fill",
                description="How to handle the aspect ratio",
            ),
        },
    )

    def invoke(self, input: Blob, params: dict[str, Any]) -> Blob:
        size = (int(params["width"]), int(params["height"]))
        fit = params.get("fit", "fill")
        image = open_image(input)

        if fit == "contain":
            resized = ImageOps.contain(image, size)
        elif fit == "cover":
            resized = ImageOps.fit(image, size)
        else:
            resized = image.resize(size)

        mime = input.mime if input.mime in FORMATS else "image/png"
        logger.debug(f"Resized {image.width}x{image.height} -> {resized.width}x{resized.height} ({fit})")
        return encode_image(resized, mime)


class Convert(TransformBase):
    descriptor = CapabilityDescriptor(
        name="convert",
        kind="transform",
        description="Convert an image to another format",
        category="Basic",
        parameters={
            "to": ParameterSpec(
                type="enum", required=True, choices=list(FORMATS), description="Target MIME type"
            ),
            "quality": ParameterSpec(
                type="number", minimum=1, maximum=100, description="Lossy encoder quality"
            ),
        },
    )

    def invoke(self, input: Blob, params: dict[str, Any]) -> Blob:
        save_kwargs = {}
        if params.get("quality") is not None and params["to"] != "image/png":
            save_kwargs["quality"] = int(params["quality"])

        converted = encode_image(open_image(input), params["to"], **save_kwargs)
        logger.debug(f"Converted {input.mime} -> {converted.mime}")
        return converted
