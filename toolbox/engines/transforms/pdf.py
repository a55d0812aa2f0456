"""
PDF Transforms (pypdf)

Merge, split and rotate whole documents. Parsing and writing run in a
worker thread.
"""

import asyncio
import re
from abc import abstractmethod
from pathlib import Path
from typing import Optional, Dict, Any, List

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from toolbox.core.exceptions import NotFound, TransformFailure, ValidationFailure
from toolbox.core.logging import get_logger
from toolbox.engines.transforms.base import (
    Arity,
    ParamKind,
    ParamSpec,
    Transform,
    TransformContext,
)

logger = get_logger(__name__)

DEFAULT_ROTATION = 90

_RANGE_ITEM = re.compile(r"^(\d+)(?:\s*-\s*(\d+))?$")


def parse_page_ranges(expression: str) -> List[tuple]:
    """'1-3, 5' -> [(1, 3), (5, 5)], 1-based and inclusive."""
    ranges = []
    for item in expression.split(","):
        item = item.strip()
        if not item:
            continue
        match = _RANGE_ITEM.match(item)
        if not match:
            raise ValidationFailure(
                f"Invalid page range '{item}'. Use forms like 1-3,5.",
                details={"parameter": "pages"}
            )
        start = int(match.group(1))
        end = int(match.group(2) or start)
        if start < 1 or end < start:
            raise ValidationFailure(
                f"Invalid page range '{item}'.",
                details={"parameter": "pages"}
            )
        ranges.append((start, end))
    if not ranges:
        raise ValidationFailure("No pages selected.", details={"parameter": "pages"})
    return ranges


def select_pages(ranges: List[tuple], page_count: int) -> List[int]:
    """Zero-based page indices in document order, duplicates dropped."""
    selected = set()
    for start, end in ranges:
        if end > page_count:
            raise ValidationFailure(
                f"Page {end} does not exist; the document has {page_count} pages.",
                details={"parameter": "pages", "page_count": page_count}
            )
        selected.update(range(start - 1, end))
    return sorted(selected)


def _load(path: Path) -> PdfReader:
    try:
        reader = PdfReader(path)
        if reader.is_encrypted:
            raise TransformFailure("The PDF is password-protected.")
        # Force the page tree to parse now so corruption surfaces here
        len(reader.pages)
        return reader
    except FileNotFoundError:
        raise NotFound("Input document no longer exists.")
    except (PyPdfError, ValueError, KeyError, OSError) as e:
        logger.warning("pdf_read_failed", input=path.name, error=str(e), error_type=type(e).__name__)
        raise TransformFailure("Could not read PDF. The file is corrupt or not a PDF.")


def _write(writer: PdfWriter, path: Path):
    try:
        with open(path, "wb") as f:
            writer.write(f)
    except (PyPdfError, ValueError, KeyError) as e:
        path.unlink(missing_ok=True)
        logger.warning("pdf_write_failed", output=path.name, error=str(e), error_type=type(e).__name__)
        raise TransformFailure("Could not write PDF.")


class PdfTransform(Transform):
    content_kind = "pdf"
    output_extension = "pdf"

    async def run(self, ctx: TransformContext) -> Optional[str]:
        return await asyncio.to_thread(self.process, ctx)

    @abstractmethod
    def process(self, ctx: TransformContext) -> Optional[str]:
        """Synchronous body, executed off the event loop."""


class PdfMerger(PdfTransform):
    """All pages of every input, in input order. One bad input aborts the whole merge."""

    operation = "pdf-merger"
    arity = Arity.MULTIPLE
    description = "Concatenate two or more PDF documents."
    output_prefix = "merged"
    success_message = "PDFs merged successfully!"

    def process(self, ctx: TransformContext) -> Optional[str]:
        writer = PdfWriter()
        try:
            for path in ctx.input_paths:
                reader = _load(path)
                for page in reader.pages:
                    writer.add_page(page)
        except TransformFailure as e:
            raise TransformFailure(
                "Failed to merge PDFs. One of the files may be corrupt or password-protected.",
                details={"cause": e.message}
            )
        except (PyPdfError, ValueError, KeyError) as e:
            logger.warning("pdf_merge_failed", error=str(e), error_type=type(e).__name__)
            raise TransformFailure(
                "Failed to merge PDFs. One of the files may be corrupt or password-protected."
            )
        _write(writer, ctx.output_path)
        return None


class PdfSplitter(PdfTransform):
    """Extract a strict subset of pages, kept in document order."""

    operation = "pdf-splitter"
    description = "Extract selected pages (e.g. 1-3,5) into a new PDF."
    params = (
        ParamSpec(name="pages", default="1", description="Page ranges, 1-based, e.g. 1-3,5"),
    )
    output_prefix = "split"
    success_message = "PDF split successfully!"

    def validate(self, params: Dict[str, Any]):
        params["ranges"] = parse_page_ranges(params["pages"])

    def process(self, ctx: TransformContext) -> Optional[str]:
        reader = _load(ctx.input_paths[0])
        page_count = len(reader.pages)
        if page_count < 2:
            raise ValidationFailure(
                "The document has only one page; there is nothing to split.",
                details={"page_count": page_count}
            )

        indices = select_pages(ctx.params["ranges"], page_count)
        if len(indices) == page_count:
            raise ValidationFailure(
                "The selection covers every page; choose a subset to split out.",
                details={"parameter": "pages", "page_count": page_count}
            )

        writer = PdfWriter()
        for index in indices:
            writer.add_page(reader.pages[index])
        _write(writer, ctx.output_path)
        return None


class PdfRotator(PdfTransform):
    """Rotate every page of the document by the same angle."""

    operation = "pdf-rotator"
    description = "Rotate all pages clockwise by a multiple of 90 degrees."
    params = (
        ParamSpec(name="angle", kind=ParamKind.INT, default=DEFAULT_ROTATION, minimum=-270, maximum=360),
    )
    output_prefix = "rotated"
    success_message = "PDF rotated successfully!"

    def validate(self, params: Dict[str, Any]):
        if params["angle"] % 90 != 0:
            raise ValidationFailure(
                "Angle must be a multiple of 90 degrees.",
                details={"parameter": "angle", "value": params["angle"]}
            )

    def process(self, ctx: TransformContext) -> Optional[str]:
        reader = _load(ctx.input_paths[0])
        angle = ctx.params["angle"] % 360
        writer = PdfWriter()
        try:
            for page in reader.pages:
                if angle:
                    page.rotate(angle)
                writer.add_page(page)
        except (PyPdfError, ValueError, KeyError) as e:
            logger.warning("pdf_rotate_failed", error=str(e), error_type=type(e).__name__)
            raise TransformFailure("Could not rotate PDF.")
        _write(writer, ctx.output_path)
        return None


PDF_TRANSFORMS = (
    PdfMerger,
    PdfSplitter,
    PdfRotator,
)
