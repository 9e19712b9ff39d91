"""Sketch upload handling: validate, then compress before sending to Claude."""
from PIL import Image, UnidentifiedImageError
import io
import base64

from sketchcoder.errors import InvalidUpload


def validate_upload(data: bytes, content_type: str | None, max_bytes: int, allowed_types: list[str]) -> None:
    """Reject empty, oversized, wrongly typed or undecodable uploads."""
    if not data:
        raise InvalidUpload("No file provided")
    if len(data) > max_bytes:
        raise InvalidUpload(f"File size exceeds {max_bytes / (1024 * 1024):.0f}MB limit")
    if content_type not in allowed_types:
        raise InvalidUpload(
            f"File type not allowed. Allowed types: {', '.join(allowed_types)}",
            {"content_type": content_type},
        )
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidUpload(f"Could not decode image: {e}")


def optimize_sketch(image_bytes: bytes, max_width: int = 1600, quality: int = 85) -> bytes:
    """
    Resize and compress a sketch for API consumption.
    Phone photos of paper sketches are often 4000px+; 1600px keeps pen strokes legible.
    """
    img = Image.open(io.BytesIO(image_bytes))

    # Resize if wider than max_width
    w, h = img.size
    if w > max_width:
        ratio = max_width / w
        img = img.resize((max_width, int(h * ratio)), Image.LANCZOS)

    # Flatten transparency onto white (JPEG has no alpha; sketches are drawn on white)
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        bg = Image.new("RGB", img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[3])
        img = bg
    elif img.mode != "RGB":
        img = img.convert("RGB")

    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def sketch_to_b64(image_bytes: bytes, compress: bool = True,
                  max_width: int = 1600, quality: int = 85,
                  media_type: str = "image/png") -> tuple[str, str]:
    """
    Convert sketch bytes to base64 string.
    Returns (base64_string, media_type).
    """
    if compress:
        optimized = optimize_sketch(image_bytes, max_width=max_width, quality=quality)
        return base64.b64encode(optimized).decode(), "image/jpeg"
    return base64.b64encode(image_bytes).decode(), media_type
