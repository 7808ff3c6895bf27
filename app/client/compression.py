"""Client-side image shrinking applied before product images are uploaded.

Images at or below ``MAX_UPLOAD_BYTES`` are returned untouched. Larger ones are
decoded, scaled so their longer side is at most ``MAX_DIMENSION`` pixels and
re-encoded as JPEG at ``JPEG_QUALITY``. The output keeps the original file name.
"""

import mimetypes
import time
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path

import anyio
from PIL import Image, UnidentifiedImageError

MAX_UPLOAD_BYTES = 2 * 1024 * 1024
MAX_DIMENSION = 1200
JPEG_QUALITY = 70


class CompressionError(Exception):
    """Raised when an oversized file cannot be decoded as an image."""


@dataclass(frozen=True)
class ImageFile:
    name: str
    content: bytes
    content_type: str = "application/octet-stream"
    last_modified: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: str | Path) -> "ImageFile":
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type,
            last_modified=path.stat().st_mtime,
        )


def scaled_dimensions(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    """Clamp the larger side to ``max_dimension`` keeping the aspect ratio."""

    if width > height:
        if width > max_dimension:
            height = round(height * max_dimension / width)
            width = max_dimension
    elif height > max_dimension:
        width = round(width * max_dimension / height)
        height = max_dimension
    return max(width, 1), max(height, 1)


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def compress_image(image: ImageFile, *, threshold: int = MAX_UPLOAD_BYTES) -> ImageFile:
    if image.size <= threshold:
        return image

    try:
        with Image.open(BytesIO(image.content)) as img:
            rgb = _flatten(img)
            target = scaled_dimensions(*rgb.size)
            if target != rgb.size:
                rgb = rgb.resize(target, Image.Resampling.LANCZOS)
            output = BytesIO()
            rgb.save(output, format="JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError) as exc:
        raise CompressionError(f"Cannot compress {image.name}: {exc}") from exc

    return ImageFile(
        name=image.name,
        content=output.getvalue(),
        content_type="image/jpeg",
        last_modified=time.time(),
    )


async def compress_image_async(image: ImageFile, *, threshold: int = MAX_UPLOAD_BYTES) -> ImageFile:
    """Run :func:`compress_image` on a worker thread."""

    if image.size <= threshold:
        return image
    return await anyio.to_thread.run_sync(lambda: compress_image(image, threshold=threshold))
