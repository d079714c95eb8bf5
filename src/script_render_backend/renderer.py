"""
Script document rendering.

Rendering happens in two stages so that the expensive part can be validated
up front and the parsing can be tested in isolation:

- ``generate_layout`` turns a ``RenderInput`` into a ``Layout``: a cover section
  plus the script body segmented into ``TimedBlock`` objects. Pure, no I/O.
- ``render_artifact`` lays a ``Layout`` out into a paginated PDF: cover page,
  body blocks, header logos on every page and a "Page X of Y" footer.

Time markers follow a small grammar, recognised at the start of a line::

    marker := "[" INT "s" "-" INT "s" "]" ":"

Whitespace is tolerated around the numbers and the dash. The first marker on a
line wins; the rest of the line is kept verbatim as the first body line.
"""

from __future__ import annotations

import base64
import html
import logging
import mimetypes
import re
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidInput, RenderFailure
from .models import CoverSection, Layout, RenderInput, TimedBlock

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"^\s*(\[\s*(\d+)\s*s\s*-\s*(\d+)\s*s\s*\]\s*:)(.*)$")

WHITESPACE_PATTERN = re.compile(r"\s+")

DATA_URI_PATTERN = re.compile(r"^data:image/[\w.+-]+;base64,[A-Za-z0-9+/=]+$")

DEFAULT_MIN_CONTENT_CHARS = 20

SCRIPT_TYPE_LABELS = {
    "social_media": "Social Media",
    "internal": "Internal",
    "tv_commercial": "TV Commercial",
}

STYLESHEET = """
@page {
  size: A4;
  margin: 90pt 50pt 60pt 50pt;
  @top-left { content: element(ownerSlot); vertical-align: middle; }
  @top-right { content: element(clientSlot); vertical-align: middle; }
  @bottom-center {
    content: "Page " counter(page) " of " counter(pages);
    font-family: Helvetica, Arial, sans-serif;
    font-size: 9pt;
    color: #555555;
  }
}
body { font-family: Helvetica, Arial, sans-serif; margin: 0; padding: 0; color: #111111; }
.slot-owner { position: running(ownerSlot); text-align: left; }
.slot-client { position: running(clientSlot); text-align: right; }
.slot img { height: 40pt; }
.slot .slot-name { font-weight: bold; font-size: 10pt; }
.cover { page-break-after: always; text-align: center; padding-top: 160pt; }
.cover .cover-type { font-size: 11pt; color: #6b7280; text-transform: uppercase; letter-spacing: 1pt; }
.cover h1 { font-size: 28pt; margin: 16pt 0 12pt; }
.cover .cover-client { font-size: 14pt; margin: 4pt 0; }
.cover .cover-meta { font-size: 11pt; color: #374151; margin: 4pt 0; }
.body h2 { font-size: 20pt; text-align: center; margin: 0 0 18pt; }
.block { margin: 0 0 10pt; }
.block-label { font-weight: bold; font-size: 14pt; margin: 10pt 0 4pt; }
.block-line { font-size: 11pt; font-weight: normal; text-align: justify; margin: 0 0 3pt; white-space: pre-wrap; }
"""


def segment_content(content: str) -> List[TimedBlock]:
    """
    Split script content into timed blocks.

    Each marker line opens a new block. Following lines belong to that block
    until the next marker or a blank line. Text that is not under a marker
    (before the first one, or after a paragraph break) becomes an unlabeled
    block. Content without any marker is returned as a single unlabeled block
    holding every line. Blocks keep source order; ranges are never sorted or
    renumbered.

    Args:
        content: Raw script text

    Returns:
        Blocks in order of first appearance
    """
    lines = content.splitlines()
    if not any(MARKER_PATTERN.match(line) for line in lines):
        return [TimedBlock(body_lines=lines)]

    blocks: List[TimedBlock] = []
    current: Optional[TimedBlock] = None
    for line in lines:
        match = MARKER_PATTERN.match(line)
        if match:
            current = TimedBlock(
                label=match.group(1),
                start_seconds=int(match.group(2)),
                end_seconds=int(match.group(3)),
            )
            blocks.append(current)
            remainder = match.group(4).strip()
            if remainder:
                current.body_lines.append(remainder)
            continue

        if not line.strip():
            # Paragraph break closes the current block
            current = None
            continue

        if current is None:
            current = TimedBlock()
            blocks.append(current)
        current.body_lines.append(line)

    return blocks


def visible_length(text: str) -> int:
    return len(WHITESPACE_PATTERN.sub("", text))


class DocumentRenderer:
    """
    Turns render inputs into laid-out PDF documents.

    Attributes:
        min_content_chars: Minimum number of non-whitespace characters a layout
            body must contain before rendering is attempted
        uploads_dir: Directory that ``/uploads/...`` logo references resolve to
        date_format: strftime format used for the cover generation date
        debug_html_path: When set, the generated HTML is written here before layout
    """

    def __init__(
        self,
        min_content_chars: int = DEFAULT_MIN_CONTENT_CHARS,
        uploads_dir: Path | None = None,
        date_format: str = "%d/%m/%Y",
        debug_html_path: Path | None = None,
    ) -> None:
        self.min_content_chars = min_content_chars
        self.uploads_dir = uploads_dir or Path("uploads")
        self.date_format = date_format
        self.debug_html_path = debug_html_path

    def generate_layout(self, render_input: RenderInput) -> Layout:
        """
        Build the cover and body layout for a script version.

        Raises:
            InvalidInput: If the client name is missing
        """
        if not render_input.client_name or not render_input.client_name.strip():
            raise InvalidInput(
                "Client name is required to render a script.",
                details={"project_title": render_input.project_title},
            )

        cover = CoverSection(
            title=render_input.project_title or "Script",
            script_type=SCRIPT_TYPE_LABELS.get(render_input.script_type, render_input.script_type),
            client_name=render_input.client_name.strip(),
            client_logo_ref=render_input.client_logo_ref,
            owner_name=render_input.owner_name,
            owner_logo_ref=render_input.owner_logo_ref,
            version_number=render_input.version_number,
            generated_on=render_input.generated_at.strftime(self.date_format),
            generated_at=render_input.generated_at,
        )
        blocks = segment_content(render_input.content)
        logger.info(
            f"Layout generated for '{cover.title}' v{cover.version_number}: "
            f"{len(blocks)} blocks, {sum(1 for b in blocks if b.label)} timed"
        )
        return Layout(cover=cover, blocks=blocks)

    def validate(self, layout: Layout) -> None:
        length = visible_length(layout.visible_text())
        if length < self.min_content_chars:
            raise InvalidInput(
                f"Script content is too short to render ({length} visible characters, "
                f"minimum {self.min_content_chars}).",
                details={"visible_chars": length, "min_chars": self.min_content_chars},
            )

    def render_artifact(self, layout: Layout) -> bytes:
        """
        Lay out a ``Layout`` into PDF bytes.

        Validation runs first; a layout that fails it never touches the
        filesystem or the PDF engine.

        Raises:
            InvalidInput: If the visible content is below the configured minimum
            RenderFailure: If the PDF engine is not available
        """
        self.validate(layout)

        logos = {
            "owner": self.resolve_logo(layout.cover.owner_logo_ref),
            "client": self.resolve_logo(layout.cover.client_logo_ref),
        }
        document_html = self.build_html(layout, logos)
        if self.debug_html_path:
            self._dump_debug_html(document_html)

        try:
            from weasyprint import HTML
        except (ImportError, OSError) as exc:
            raise RenderFailure(
                "weasyprint is required for PDF rendering. Install with: pip install weasyprint"
            ) from exc

        pdf_bytes = HTML(string=document_html).write_pdf()
        logger.info(f"Rendered PDF for '{layout.cover.title}': {len(pdf_bytes)} bytes, {len(layout.blocks)} blocks")
        return pdf_bytes

    def resolve_logo(self, ref: Optional[str]) -> Optional[str]:
        """
        Resolve a logo reference to an embeddable ``data:`` URI.

        Supported references are base64 ``data:image/...`` URIs, ``/uploads/<file>``
        paths (relative to ``uploads_dir``) and filesystem paths. Remote URLs are
        not fetched.

        Returns:
            The data URI, or None when the reference cannot be resolved
        """
        if not ref:
            return None
        if ref.startswith("data:"):
            if DATA_URI_PATTERN.fullmatch(ref):
                return ref
            logger.warning("Logo data URI is not a base64 image, using name instead")
            return None
        if ref.startswith(("http://", "https://")):
            logger.warning(f"Remote logo references are not supported, using name instead: {ref}")
            return None

        if ref.startswith("/uploads/"):
            path = self.uploads_dir / ref[len("/uploads/"):]
        else:
            path = Path(ref)
            if not path.is_absolute():
                path = self.uploads_dir / path

        mime_type, _ = mimetypes.guess_type(path.name)
        if not mime_type or not mime_type.startswith("image/"):
            logger.warning(f"Logo reference is not an image, using name instead: {ref}")
            return None
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning(f"Logo could not be loaded from {path}: {exc}")
            return None
        return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

    def build_html(self, layout: Layout, logos: Optional[Dict[str, Optional[str]]] = None) -> str:
        """Build the complete HTML document that WeasyPrint lays out."""
        logos = logos or {}
        cover = layout.cover
        esc = html.escape

        owner_slot = _logo_slot("slot-owner", logos.get("owner"), cover.owner_name)
        client_slot = _logo_slot("slot-client", logos.get("client"), cover.client_name)

        block_html = "".join(_render_block(block) for block in layout.blocks)

        return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{esc(cover.title)}</title>
<meta name="author" content="{esc(cover.owner_name)}">
<meta name="dcterms.created" content="{cover.generated_at.isoformat()}">
<meta name="dcterms.modified" content="{cover.generated_at.isoformat()}">
<style>{STYLESHEET}</style>
</head>
<body>
{owner_slot}
{client_slot}
<section class="cover">
<p class="cover-type">{esc(cover.script_type)}</p>
<h1>{esc(cover.title)}</h1>
<p class="cover-client">Client: <strong>{esc(cover.client_name)}</strong></p>
<p class="cover-meta">Version {cover.version_number} &middot; {esc(cover.generated_on)}</p>
<p class="cover-meta">{esc(cover.owner_name)}</p>
</section>
<section class="body">
<h2>{esc(cover.title)}</h2>
{block_html}
</section>
</body>
</html>
"""

    def _dump_debug_html(self, document_html: str) -> None:
        try:
            Path(self.debug_html_path).write_text(document_html, encoding="utf-8")
            logger.info(f"Debug HTML written to {self.debug_html_path} ({len(document_html)} chars)")
        except OSError as exc:
            logger.error(f"Failed to write debug HTML to {self.debug_html_path}: {exc}")


def _logo_slot(css_class: str, src: Optional[str], name: str) -> str:
    if src:
        inner = f'<img src="{html.escape(src, quote=True)}" alt="{html.escape(name)}">'
    else:
        inner = f'<span class="slot-name">{html.escape(name)}</span>'
    return f'<div class="slot {css_class}">{inner}</div>'


def _render_block(block: TimedBlock) -> str:
    parts = ['<div class="block">']
    if block.label:
        parts.append(f'<p class="block-label">{html.escape(block.label)}</p>')
    for line in block.body_lines:
        parts.append(f'<p class="block-line">{html.escape(line)}</p>')
    parts.append("</div>")
    return "\n".join(parts) + "\n"
