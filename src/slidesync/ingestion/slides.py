"""Reference slide rendering.

The pipeline only depends on the :class:`SlideRasterizer` protocol.  The
default :class:`PopplerRasterizer` renders PDF pages with ``pdftoppm`` and
normalises them with OpenCV to a capped width and a fixed JPEG quality.
"""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np

from slidesync.errors import RasterizeError
from slidesync.ingestion.frames import encode_jpeg
from slidesync.models import ReferenceSlide


class SlideRasterizer(Protocol):
    def rasterize(self, document: bytes, source_id: int) -> list[ReferenceSlide]:
        """Render every page of *document*, pages ascending."""
        ...


class PopplerRasterizer:
    """Renders PDF pages through poppler's ``pdftoppm``.

    Parameters
    ----------
    max_width:
        Pages wider than this are scaled down, aspect ratio preserved.
    jpeg_quality:
        OpenCV JPEG quality (1-100) of the re-encoded pages.
    dpi:
        Render resolution handed to ``pdftoppm`` before downscaling.
    """

    def __init__(self, max_width: int = 512, jpeg_quality: int = 70, dpi: int = 72) -> None:
        self.max_width = max_width
        self.jpeg_quality = jpeg_quality
        self.dpi = dpi

    def rasterize(self, document: bytes, source_id: int) -> list[ReferenceSlide]:
        with tempfile.TemporaryDirectory(prefix="slidesync_") as tmp:
            tmp_dir = Path(tmp)
            pdf_path = tmp_dir / "deck.pdf"
            pdf_path.write_bytes(document)
            self._render(pdf_path, tmp_dir / "page", source_id)

            pages = sorted(tmp_dir.glob("page-*.png"), key=_page_index)
            if not pages:
                raise RasterizeError(source_id, "the document has no pages")

            slides: list[ReferenceSlide] = []
            for page_number, page_path in enumerate(pages, start=1):
                image = cv2.imread(str(page_path))
                if image is None:
                    raise RasterizeError(source_id, f"page {page_number} could not be read back")
                data = encode_jpeg(self._fit_width(image), self.jpeg_quality)
                if data is None:
                    raise RasterizeError(source_id, f"page {page_number} could not be encoded")
                slides.append(ReferenceSlide(source_id=source_id, page_number=page_number, image=data))
            return slides

    def _render(self, pdf_path: Path, prefix: Path, source_id: int) -> None:
        cmd = ["pdftoppm", "-png", "-r", str(self.dpi), str(pdf_path), str(prefix)]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except subprocess.CalledProcessError as exc:
            raise RasterizeError(
                source_id,
                exc.stderr.decode("utf-8", errors="replace").strip() or f"pdftoppm exited {exc.returncode}",
            ) from exc
        except FileNotFoundError as exc:
            raise RasterizeError(source_id, "pdftoppm not found; install poppler-utils") from exc

    def _fit_width(self, image: np.ndarray) -> np.ndarray:
        height, width = image.shape[:2]
        if width <= self.max_width:
            return image
        scale = self.max_width / width
        size = (self.max_width, max(1, round(height * scale)))
        return cv2.resize(image, size, interpolation=cv2.INTER_AREA)


def _page_index(path: Path) -> int:
    # pdftoppm zero-pads to the page count width: page-01.png ... page-12.png
    return int(path.stem.rsplit("-", 1)[1])
