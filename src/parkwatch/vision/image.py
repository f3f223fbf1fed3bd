"""Image handles and I/O helpers."""

from __future__ import annotations

import base64
import io
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from PIL import Image


def ensure_dir(p: Path) -> None:
    """Create `p` if it doesn't exist."""
    p.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class ImageSource:
    """An uploaded image: display name plus encoded bytes.

    Attributes:
        name: Display name (usually the file name).
        data: Encoded image bytes (JPEG, PNG, ...).
        content_type: MIME type of `data`.
    """

    name: str
    data: bytes
    content_type: str = "image/jpeg"

    @classmethod
    def from_path(cls, path: Path | str) -> ImageSource:
        """Read an image file from disk."""
        path = Path(path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(name=path.name, data=path.read_bytes(), content_type=content_type)

    @classmethod
    def from_pil(cls, name: str, img: Image.Image, quality: int = 90) -> ImageSource:
        """Wrap an in-memory image (e.g. a decoded camera frame) as a JPEG source."""
        return cls(name=name, data=img_to_jpeg_bytes(img.convert("RGB"), quality=quality))

    def to_data_url(self) -> str:
        """Encode as a base64 ``data:`` URL."""
        b64 = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{b64}"

    def to_pil(self) -> Image.Image:
        """Decode to an RGB PIL image."""
        with Image.open(io.BytesIO(self.data)) as img:
            return img.convert("RGB")


def img_to_jpeg_bytes(img: Image.Image, quality: int = 90) -> bytes:
    """Encode an image as JPEG bytes."""
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()
