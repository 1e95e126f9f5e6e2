"""Signature compositing for PDF and image documents."""
import io
import logging
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter, Transformation
from pypdf.errors import PyPdfError

from videodesk.core.exceptions import CompositeError

logger = logging.getLogger(__name__)

SIGNABLE_EXTENSIONS = {"pdf", "jpg", "jpeg", "png"}


def file_extension(filename: str) -> str:
    return Path(filename or "").suffix.lower().lstrip(".")


class SignatureCompositor:
    """Stamps a signature image onto the bottom-right of a document.

    Images get the signature alpha-composited in place. PDFs get it merged
    onto the last page.
    """

    def __init__(self, width_ratio: float = 0.25, margin: int = 24):
        self.width_ratio = width_ratio
        self.margin = margin

    def composite(self, document: bytes, signature: bytes, filename: str) -> bytes:
        """
        Return the document with the signature stamped on it.

        Args:
            document: Original PDF or image bytes
            signature: Signature image bytes (PNG with transparency works best)
            filename: Document name, used to pick the format

        Raises:
            CompositeError: If either input cannot be read or the type is unsupported
        """
        ext = file_extension(filename)
        if ext not in SIGNABLE_EXTENSIONS:
            raise CompositeError(f"Unsupported document type: .{ext or '?'}")

        try:
            stamp = Image.open(io.BytesIO(signature))
            stamp.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CompositeError(f"Signature image could not be read: {e}") from e
        stamp = stamp.convert("RGBA")

        if ext == "pdf":
            return self._stamp_pdf(document, stamp)
        return self._stamp_image(document, stamp, ext)

    def _scale(self, stamp: Image.Image, page_width: float) -> Image.Image:
        width = max(1, int(page_width * self.width_ratio))
        height = max(1, int(stamp.height * width / stamp.width))
        return stamp.resize((width, height), Image.Resampling.LANCZOS)

    def _stamp_image(self, document: bytes, stamp: Image.Image, ext: str) -> bytes:
        try:
            base = Image.open(io.BytesIO(document))
            base.load()
        except (UnidentifiedImageError, OSError) as e:
            raise CompositeError(f"Document image could not be read: {e}") from e

        canvas = base.convert("RGBA")
        signature = self._scale(stamp, canvas.width)
        x = max(0, canvas.width - signature.width - self.margin)
        y = max(0, canvas.height - signature.height - self.margin)
        canvas.alpha_composite(signature, dest=(x, y))

        out = io.BytesIO()
        if ext in ("jpg", "jpeg"):
            canvas.convert("RGB").save(out, format="JPEG", quality=95)
        else:
            canvas.save(out, format="PNG")
        return out.getvalue()

    def _stamp_pdf(self, document: bytes, stamp: Image.Image) -> bytes:
        try:
            reader = PdfReader(io.BytesIO(document))
            writer = PdfWriter()
            for page in reader.pages:
                writer.add_page(page)
            if not writer.pages:
                raise CompositeError("Document has no pages")

            target = writer.pages[-1]
            box = target.mediabox
            page_width = float(box.width)
            signature = self._scale(stamp, page_width)

            # One pixel per point at 72 dpi
            flat = Image.new("RGB", signature.size, (255, 255, 255))
            flat.paste(signature, mask=signature.split()[3])
            rendered = io.BytesIO()
            flat.save(rendered, format="PDF", resolution=72.0)
            stamp_page = PdfReader(io.BytesIO(rendered.getvalue())).pages[0]

            tx = float(box.left) + max(0.0, page_width - signature.width - self.margin)
            ty = float(box.bottom) + self.margin
            target.merge_transformed_page(stamp_page, Transformation().translate(tx, ty))

            out = io.BytesIO()
            writer.write(out)
            return out.getvalue()
        except CompositeError:
            raise
        except (PyPdfError, ValueError, OSError) as e:
            logger.error(f"[SIGNING] PDF stamping failed - Error: {type(e).__name__}: {e}", exc_info=True)
            raise CompositeError(f"Could not stamp PDF: {e}") from e
