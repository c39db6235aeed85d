"""
Reading DOCX bodies as plain contract text.

Tracked changes are read in their accepted form: inserted runs are kept, deleted
runs are dropped. Dynamic page-number fields are skipped since they are page
furniture, not contract text.
"""

from typing import Iterator, List, Union

import structlog
from docx.document import Document as DocumentObject
from docx.oxml.ns import qn
from docx.table import Table, _Cell
from docx.text.paragraph import Paragraph
from docx.text.run import Run

logger = structlog.get_logger(__name__)


def _is_page_instr(instr: str) -> bool:
    parts = instr.strip().split()
    return bool(parts) and parts[0].upper() in ("PAGE", "NUMPAGES", "SECTIONPAGES")


def iter_block_items(parent) -> Iterator[Union[Paragraph, Table]]:
    """
    Yields Paragraph or Table objects in the order they appear in the XML.
    Supports Document and Cell objects. Recursion is left to the caller.
    """
    if isinstance(parent, DocumentObject):
        parent_elm = parent.element.body
    elif isinstance(parent, _Cell):
        parent_elm = parent._tc
    elif hasattr(parent, "_element"):
        parent_elm = parent._element
    else:
        raise ValueError(f"Unsupported parent type for iteration: {type(parent)}")

    for child in parent_elm.iterchildren():
        if child.tag == qn("w:p"):
            yield Paragraph(child, parent)
        elif child.tag == qn("w:tbl"):
            yield Table(child, parent)


def iter_visible_runs(paragraph: Paragraph) -> Iterator[Run]:
    """
    Runs of the paragraph as the reader sees them with all changes accepted:
    w:ins and w:hyperlink content included, w:del content and PAGE field results skipped.
    """
    in_field = False
    instr = ""
    hide_result = False

    def visit(r_element):
        nonlocal in_field, instr, hide_result

        for fchar in r_element.findall(qn("w:fldChar")):
            fld_type = fchar.get(qn("w:fldCharType"))
            if fld_type == "begin":
                in_field, instr = True, ""
            elif fld_type == "separate":
                hide_result = _is_page_instr(instr)
            elif fld_type == "end":
                in_field, instr, hide_result = False, "", False

        if in_field and not hide_result:
            for node in r_element.findall(qn("w:instrText")):
                instr += node.text or ""
            return None

        if not hide_result:
            return Run(r_element, paragraph)
        return None

    for child in paragraph._element:
        if child.tag == qn("w:r"):
            runs = [child]
        elif child.tag in (qn("w:ins"), qn("w:hyperlink")):
            runs = [sub for sub in child if sub.tag == qn("w:r")]
        else:
            # w:del, bookmarks, comment ranges
            continue

        for r_element in runs:
            run = visit(r_element)
            if run is not None:
                yield run


def get_run_text(run: Run) -> str:
    """
    Extracts text from a run, converting <w:tab/> to spaces and <w:br/> to newlines.
    Standard run.text ignores these.
    """
    text = ""
    for child in run._element:
        if child.tag == qn("w:t"):
            text += child.text or ""
        elif child.tag == qn("w:tab"):
            text += " "
        elif child.tag in (qn("w:br"), qn("w:cr")):
            text += "\n"
    return text


def paragraph_text(paragraph: Paragraph) -> str:
    return "".join(get_run_text(run) for run in iter_visible_runs(paragraph))


def _table_lines(table: Table) -> List[str]:
    """One line per row, cells joined with ' | ' so table detection picks them up."""
    lines = []
    for row in table.rows:
        cells = []
        seen = set()
        for cell in row.cells:
            # Merged cells are yielded once per grid column
            if cell._tc in seen:
                continue
            seen.add(cell._tc)
            cells.append(" ".join(block_text(cell).split("\n")).strip())
        lines.append(" | ".join(cells))
    return lines


def block_text(container) -> str:
    lines = []
    for block in iter_block_items(container):
        if isinstance(block, Paragraph):
            lines.append(paragraph_text(block))
        else:
            lines.extend(_table_lines(block))
    return "\n".join(lines)


def docx_to_text(doc: DocumentObject) -> str:
    """Body text in document order (headers and footers are left out)."""
    text = block_text(doc)
    logger.debug(f"DOCX body: {len(doc.paragraphs)} paragraphs, {len(doc.tables)} tables")
    return text
