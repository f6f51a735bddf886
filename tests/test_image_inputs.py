from __future__ import annotations

import unittest
from io import BytesIO

from PIL import Image

from image_inputs import InlineImage, inline_image_from_upload, load_inline_images, thumbnail_png_bytes


class _Upload:
    """Stand-in for Streamlit's UploadedFile."""

    def __init__(self, name: str, data: bytes, type: str = "") -> None:
        self.name = name
        self.type = type
        self._data = data

    def getvalue(self) -> bytes:
        return self._data


class TestInlineImages(unittest.TestCase):
    def test_upload_conversion_uses_declared_type(self) -> None:
        image = inline_image_from_upload(_Upload("wall.bin", b"abc", type="image/webp"))
        self.assertEqual(image, InlineImage(data=b"abc", mime_type="image/webp", name="wall.bin"))

    def test_upload_conversion_guesses_type_from_name(self) -> None:
        self.assertEqual(inline_image_from_upload(_Upload("wall.jpg", b"abc")).mime_type, "image/jpeg")
        self.assertEqual(inline_image_from_upload(_Upload("noext", b"abc")).mime_type, "application/octet-stream")

    def test_readable_file_objects(self) -> None:
        class _Readable:
            name = "photo.png"

            def read(self) -> bytes:
                return b"xyz"

        image = inline_image_from_upload(_Readable())
        self.assertEqual(image.data, b"xyz")
        self.assertEqual(image.mime_type, "image/png")

    def test_batch_preserves_order(self) -> None:
        uploads = [_Upload(f"{i}.png", bytes([i]) * 10) for i in range(12)]
        images = load_inline_images(uploads, max_workers=4)
        self.assertEqual([img.name for img in images], [f"{i}.png" for i in range(12)])
        self.assertEqual(images[5].data, bytes([5]) * 10)

    def test_empty_batch(self) -> None:
        self.assertEqual(load_inline_images([]), ())


class TestThumbnail(unittest.TestCase):
    def test_downscales_to_png(self) -> None:
        buf = BytesIO()
        Image.new("RGB", (2400, 1200), (10, 20, 30)).save(buf, format="JPEG")
        png = thumbnail_png_bytes(InlineImage(buf.getvalue(), "image/jpeg"), max_px=600)
        self.assertIsNotNone(png)
        with Image.open(BytesIO(png or b"")) as img:
            self.assertEqual(img.format, "PNG")
            self.assertEqual(img.size, (600, 300))

    def test_unreadable_image_returns_none(self) -> None:
        self.assertIsNone(thumbnail_png_bytes(InlineImage(b"not an image", "image/png")))


if __name__ == "__main__":
    unittest.main()
