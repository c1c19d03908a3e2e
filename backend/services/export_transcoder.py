# backend/services/export_transcoder.py
"""
Export Transcoder

Turns the canonical HTML resume produced by the optimize step into the
downloadable deliverables, without calling the model again:

- Print/PDF: the body is re-wrapped in a fixed print stylesheet (letter page,
  0.75in margins, no heading orphaned from its content, no list item split
  across pages). The same document is served for the browser print dialog and
  rendered server-side to PDF with PyMuPDF.
- DOCX: Word's HTML import ignores CSS `direction`/`text-align`, so for
  right-to-left output every block element without an explicit `dir` gets
  `dir="rtl" align="right"` before the document is converted with
  python-docx.

The generated HTML is not trusted to be well formed: stray markdown fences
and a missing <body> are tolerated.
"""

import io
import logging
import re
from typing import Optional

import fitz
from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor, Twips

from errors import ConversionError, PrintSurfaceUnavailable
from services.ai_gateway import strip_markdown_fences

logger = logging.getLogger(__name__)

DOCX_FILENAME = "optimized-resume.docx"
PDF_FILENAME = "optimized-resume.pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Block tags that get an explicit direction for Word
RTL_BLOCK_TAGS = ["p", "h1", "h2", "h3", "ul", "li", "div"]

RTL_DIR_RE = re.compile(r"""dir\s*=\s*["']?rtl""", re.IGNORECASE)

ACCENT_COLOR = RGBColor(0x4D, 0x2B, 0x8C)

# 1000 twips on every side
DOCX_MARGIN = Twips(1000)

# Letter page, 0.75in (54pt) margins
PDF_PAGE = fitz.paper_rect("letter")
PDF_MARGIN = 54

PRINT_STYLESHEET = """
    @page {
      size: letter;
      margin: 0.75in;
    }
    body {
      font-family: Arial, Helvetica, sans-serif;
      font-size: 11pt;
      line-height: 1.5;
      color: #000;
      margin: 0;
      padding: 0;
      -webkit-print-color-adjust: exact;
      print-color-adjust: exact;
    }
    h1 { color: #4D2B8C; font-size: 24pt; margin-top: 0; margin-bottom: 8pt; }
    h2 { color: #4D2B8C; font-size: 14pt; border-bottom: 2px solid #eee; padding-bottom: 4px; margin-top: 16pt; margin-bottom: 8pt; text-transform: uppercase; }
    h3 { font-size: 12pt; font-weight: bold; margin-bottom: 4px; margin-top: 12pt; }
    p, ul { margin-top: 4px; margin-bottom: 8px; }
    li { margin-bottom: 4px; }

    h1, h2, h3, h4 {
      page-break-after: avoid;
      break-after: avoid;
    }
    ul, li, p {
      page-break-inside: avoid;
      break-inside: avoid;
    }
"""

# MuPDF's Story layout ignores @page and print-only properties
PDF_STORY_CSS = """
    body { font-family: sans-serif; font-size: 11pt; line-height: 1.5; color: #000; }
    h1 { color: #4D2B8C; font-size: 24pt; margin-top: 0; margin-bottom: 8pt; }
    h2 { color: #4D2B8C; font-size: 14pt; margin-top: 16pt; margin-bottom: 8pt; text-transform: uppercase; }
    h3 { font-size: 12pt; font-weight: bold; margin-bottom: 4px; margin-top: 12pt; }
    p, ul { margin-top: 4px; margin-bottom: 8px; }
    li { margin-bottom: 4px; }
"""

AUTO_PRINT_SCRIPT = """
    <script>
      window.onload = () => {
        window.focus();
        setTimeout(() => {
          window.print();
        }, 300);
      };
    </script>
"""


# ============================================================================
# HTML helpers
# ============================================================================

def extract_body(html: str) -> str:
    """
    Return the inner content of <body>, so two full documents are never nested.

    Falls back to the document minus its <head> when there is no <body>, and to
    the raw text when there is no <html> either.
    """
    cleaned = strip_markdown_fences(html or "")
    soup = BeautifulSoup(cleaned, "html.parser")

    if soup.body is not None:
        return soup.body.decode_contents().strip()

    if soup.html is not None:
        if soup.head is not None:
            soup.head.decompose()
        return soup.html.decode_contents().strip()

    if soup.head is not None:
        soup.head.decompose()
    for item in list(soup.contents):
        if isinstance(item, Doctype):
            item.extract()
    return soup.decode().strip()


def is_rtl_document(html: str) -> bool:
    """True when the source declares dir="rtl" anywhere."""
    return bool(RTL_DIR_RE.search(html or ""))


def html_to_text(html: str) -> str:
    """Plain-text rendering of the resume, one block per line."""
    soup = BeautifulSoup(extract_body(html), "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def force_rtl_blocks(body_html: str) -> str:
    """
    Add dir="rtl" align="right" to every p/h1/h2/h3/ul/li/div that has no
    explicit dir attribute. Elements that already declare a direction are left
    exactly as they are.
    """
    soup = BeautifulSoup(body_html, "html.parser")

    for tag in soup.find_all(RTL_BLOCK_TAGS):
        if tag.has_attr("dir"):
            continue
        tag["dir"] = "rtl"
        tag["align"] = "right"

    return soup.decode()


# ============================================================================
# Print / PDF
# ============================================================================

def build_print_document(html: str, auto_print: bool = True) -> str:
    """Wrap the resume body in the print stylesheet; optionally trigger the print dialog on load."""
    direction = "rtl" if is_rtl_document(html) else "ltr"
    inner = extract_body(html)
    script = AUTO_PRINT_SCRIPT if auto_print else ""

    return f"""<!DOCTYPE html>
<html dir="{direction}">
<head>
  <title>Optimized Resume</title>
  <style>{PRINT_STYLESHEET}</style>
</head>
<body>
{inner}
{script}
</body>
</html>"""


def render_pdf(html: str) -> bytes:
    """
    Render the print document to PDF bytes.

    Raises:
        PrintSurfaceUnavailable: the PDF writer could not be opened
        ConversionError: the content could not be laid out
    """
    direction = "rtl" if is_rtl_document(html) else "ltr"
    alignment = "right" if direction == "rtl" else "left"
    inner = extract_body(html)
    story_html = (
        f'<div dir="{direction}" style="direction: {direction}; text-align: {alignment};">'
        f"{inner}</div>"
    )

    buffer = io.BytesIO()
    try:
        writer = fitz.DocumentWriter(buffer)
    except Exception as e:
        logger.error(f"Could not open PDF writer: {e}")
        raise PrintSurfaceUnavailable() from e

    where = PDF_PAGE + (PDF_MARGIN, PDF_MARGIN, -PDF_MARGIN, -PDF_MARGIN)
    try:
        try:
            story = fitz.Story(html=story_html, user_css=PDF_STORY_CSS)
            more = True
            while more:
                device = writer.begin_page(PDF_PAGE)
                more, _ = story.place(where)
                story.draw(device)
                writer.end_page()
        finally:
            writer.close()
    except Exception as e:
        logger.error(f"PDF rendering failed: {e}")
        raise ConversionError("There was an error generating the PDF. Please try the print view instead.") from e

    pdf_bytes = buffer.getvalue()
    logger.info(f"Rendered PDF: {len(pdf_bytes):,} bytes")
    return pdf_bytes


# ============================================================================
# DOCX
# ============================================================================

def build_docx_document(html: str, direction: str = "ltr") -> str:
    """Full HTML document for Word conversion, with RTL attributes forced when needed."""
    inner = extract_body(html)
    if direction == "rtl":
        inner = force_rtl_blocks(inner)

    align = "right" if direction == "rtl" else "left"
    return f"""<!DOCTYPE html>
<html dir="{direction}">
<head>
  <title>Resume</title>
  <style>
    body {{ font-family: Arial, Helvetica, sans-serif; font-size: 11pt; line-height: 1.5; color: #000; text-align: {align}; }}
    h1 {{ color: #4D2B8C; font-size: 24pt; margin-top: 0; margin-bottom: 8pt; text-align: {align}; direction: {direction}; }}
    h2 {{ color: #4D2B8C; font-size: 14pt; border-bottom: 2px solid #eee; padding-bottom: 4px; margin-top: 16pt; margin-bottom: 8pt; text-transform: uppercase; text-align: {align}; direction: {direction}; }}
    h3 {{ font-size: 12pt; font-weight: bold; margin-bottom: 4px; margin-top: 12pt; text-align: {align}; direction: {direction}; }}
    p, ul, li {{ text-align: {align}; direction: {direction}; }}
    p, ul {{ margin-top: 4px; margin-bottom: 8px; }}
    li {{ margin-bottom: 4px; }}
  </style>
</head>
<body style="direction: {direction}; text-align: {align};">
{inner}
</body>
</html>"""


# w:pPr children that must follow w:bidi
BIDI_SUCCESSORS = (
    "w:adjustRightInd", "w:snapToGrid", "w:spacing", "w:ind", "w:contextualSpacing",
    "w:mirrorIndents", "w:suppressOverlap", "w:jc", "w:textDirection", "w:textAlignment",
    "w:textboxTightWrap", "w:outlineLvl", "w:divId", "w:cnfStyle", "w:rPr", "w:sectPr",
    "w:pPrChange",
)


def _set_paragraph_bidi(paragraph):
    p_pr = paragraph._p.get_or_add_pPr()
    if p_pr.find(qn("w:bidi")) is not None:
        return
    bidi = OxmlElement("w:bidi")
    bidi.set(qn("w:val"), "1")
    p_pr.insert_element_before(bidi, *BIDI_SUCCESSORS)


def _direction_of(tag: Tag) -> Optional[str]:
    """Nearest explicit dir attribute on the tag or its ancestors."""
    node = tag
    while isinstance(node, Tag):
        if node.has_attr("dir"):
            return str(node["dir"]).lower()
        node = node.parent
    return None


ALIGNMENTS = {
    "right": WD_ALIGN_PARAGRAPH.RIGHT,
    "left": WD_ALIGN_PARAGRAPH.LEFT,
    "center": WD_ALIGN_PARAGRAPH.CENTER,
    "justify": WD_ALIGN_PARAGRAPH.JUSTIFY,
}


class DocxBuilder:
    """Walks the parsed resume HTML and emits python-docx paragraphs."""

    HEADING_LEVELS = {"h1": 0, "h2": 1, "h3": 2, "h4": 3}
    CONTAINER_TAGS = {"div", "section", "article", "header", "footer", "main", "body", "html"}
    SKIP_TAGS = {"head", "script", "style", "title", "meta", "link"}

    def __init__(self):
        self.document = Document()
        normal = self.document.styles["Normal"]
        normal.font.name = "Arial"
        normal.font.size = Pt(11)

        for section in self.document.sections:
            section.top_margin = DOCX_MARGIN
            section.bottom_margin = DOCX_MARGIN
            section.left_margin = DOCX_MARGIN
            section.right_margin = DOCX_MARGIN

    def build(self, html: str) -> bytes:
        soup = BeautifulSoup(html, "html.parser")
        root = soup.body or soup
        for child in root.children:
            self._emit(child)

        stream = io.BytesIO()
        self.document.save(stream)
        return stream.getvalue()

    def _emit(self, node):
        if isinstance(node, Comment):
            return
        if isinstance(node, NavigableString):
            text = str(node).strip()
            if text and node.__class__ is NavigableString:
                self._finish(self.document.add_paragraph(text), node.parent)
            return
        if not isinstance(node, Tag) or node.name in self.SKIP_TAGS:
            return

        if node.name in self.HEADING_LEVELS:
            paragraph = self.document.add_heading(level=self.HEADING_LEVELS[node.name])
            self._add_runs(paragraph, node)
            if node.name in ("h1", "h2"):
                for run in paragraph.runs:
                    run.font.color.rgb = ACCENT_COLOR
            self._finish(paragraph, node)
        elif node.name in ("ul", "ol"):
            style = "List Number" if node.name == "ol" else "List Bullet"
            for item in node.find_all("li", recursive=False):
                paragraph = self.document.add_paragraph(style=style)
                self._add_runs(paragraph, item)
                self._finish(paragraph, item)
        elif node.name == "li":
            paragraph = self.document.add_paragraph(style="List Bullet")
            self._add_runs(paragraph, node)
            self._finish(paragraph, node)
        elif node.name in self.CONTAINER_TAGS:
            for child in node.children:
                self._emit(child)
        elif node.name == "hr":
            self.document.add_paragraph()
        else:
            paragraph = self.document.add_paragraph()
            self._add_runs(paragraph, node)
            self._finish(paragraph, node)

    def _add_runs(self, paragraph, node, bold: bool = False, italic: bool = False):
        for child in node.children:
            if isinstance(child, Comment):
                continue
            if isinstance(child, NavigableString):
                text = re.sub(r"\s+", " ", str(child))
                if text.strip():
                    run = paragraph.add_run(text)
                    run.bold = bold or None
                    run.italic = italic or None
            elif isinstance(child, Tag):
                if child.name == "br":
                    paragraph.add_run().add_break()
                elif child.name in ("ul", "ol"):
                    # nested lists flatten into their own bullet paragraphs
                    self._emit(child)
                else:
                    self._add_runs(
                        paragraph,
                        child,
                        bold=bold or child.name in ("strong", "b"),
                        italic=italic or child.name in ("em", "i"),
                    )

    def _finish(self, paragraph, tag):
        direction = _direction_of(tag) if isinstance(tag, Tag) else None
        align = tag.get("align") if isinstance(tag, Tag) else None

        if direction == "rtl":
            _set_paragraph_bidi(paragraph)
            for run in paragraph.runs:
                run.font.rtl = True
        if align and str(align).lower() in ALIGNMENTS:
            paragraph.alignment = ALIGNMENTS[str(align).lower()]


def convert_to_docx(html: str, direction: str = "ltr") -> bytes:
    """
    Convert the resume to a DOCX file.

    Raises:
        ConversionError: the document could not be produced
    """
    document_html = build_docx_document(html, direction)
    try:
        docx_bytes = DocxBuilder().build(document_html)
    except Exception as e:
        logger.error(f"DOCX generation error: {e}")
        raise ConversionError() from e

    logger.info(f"Generated DOCX: {len(docx_bytes):,} bytes")
    return docx_bytes
