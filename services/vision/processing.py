from __future__ import annotations

from dataclasses import dataclass

from PIL import Image as PILImage, ImageOps, UnidentifiedImageError
import io

from domain.errors import InvalidInputError


@dataclass
class ProcessedImage:
    bytes: bytes
    width: int
    height: int
    content_type: str


def preprocess_photo(raw_bytes: bytes, content_type: str, max_side: int = 800) -> ProcessedImage:
    # Orientation, downscale to max_side and recompress
    try:
        im = PILImage.open(io.BytesIO(raw_bytes))
    except UnidentifiedImageError as e:
        raise InvalidInputError("Uploaded file is not an image") from e
    with im:
        im = ImageOps.exif_transpose(im)
        w, h = im.size
        scale = min(1.0, max_side / max(w, h))
        if scale < 1.0:
            im = im.resize((int(w * scale), int(h * scale)))
        buf = io.BytesIO()
        if content_type == "image/png":
            im.save(buf, format="PNG", optimize=True)
            ct = "image/png"
        else:
            im = im.convert("RGB")
            im.save(buf, format="JPEG", quality=85, optimize=True)
            ct = "image/jpeg"
        return ProcessedImage(bytes=buf.getvalue(), width=im.width, height=im.height, content_type=ct)
