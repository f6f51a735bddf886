from __future__ import annotations

import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Iterable, Optional, Tuple

from PIL import Image, UnidentifiedImageError


@dataclass(frozen=True)
class InlineImage:
    """
    An image as the model sees it: raw bytes plus a mime type. Nothing else leaks past this point.
    """

    data: bytes
    mime_type: str
    name: str = ""


def _guess_mime_type(name: str, declared: Optional[str]) -> str:
    t = (declared or "").strip()
    if t:
        return t
    guessed, _ = mimetypes.guess_type(name or "")
    return guessed or "application/octet-stream"


def inline_image_from_upload(upload: Any) -> InlineImage:
    """
    Convert a Streamlit `UploadedFile` (or any object with `name`, `type` and `getvalue()`/`read()`).
    """
    name = str(getattr(upload, "name", "") or "")
    getvalue = getattr(upload, "getvalue", None)
    data = getvalue() if callable(getvalue) else upload.read()
    return InlineImage(data=bytes(data), mime_type=_guess_mime_type(name, getattr(upload, "type", None)), name=name)


def load_inline_images(uploads: Iterable[Any], *, max_workers: int = 4) -> Tuple[InlineImage, ...]:
    """
    Read a batch of uploads concurrently. Output order always matches input order.
    """
    items = list(uploads)
    if not items:
        return ()
    if len(items) == 1:
        return (inline_image_from_upload(items[0]),)
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as pool:
        return tuple(pool.map(inline_image_from_upload, items))


def thumbnail_png_bytes(image: InlineImage, *, max_px: int = 1200) -> Optional[bytes]:
    """
    Downscale an image to PNG for embedding in PDFs. Returns None for unreadable data.
    """
    try:
        with Image.open(BytesIO(image.data)) as img:
            img = img.convert("RGB")
            img.thumbnail((max_px, max_px))
            buf = BytesIO()
            img.save(buf, format="PNG", optimize=True)
            return buf.getvalue()
    except (UnidentifiedImageError, OSError, ValueError):
        return None
