"""lxml helpers shared by the HTML processors."""

from typing import TYPE_CHECKING

from lxml import etree
from lxml import html as lxml_html

if TYPE_CHECKING:
    from lxml.html import HtmlElement


def parse_document(html: str) -> "HtmlElement | None":
    """Parse a full HTML document. Returns None for blank or unparseable input."""
    if not html or not html.strip():
        return None
    try:
        return lxml_html.document_fromstring(html)
    except (etree.ParserError, ValueError):
        return None


def serialize_document(root: "HtmlElement") -> str:
    """Serialize a parsed document back to HTML, keeping its doctype."""
    return lxml_html.tostring(root.getroottree(), encoding="unicode", method="html")


def replace_element(element: "HtmlElement", replacements: list["HtmlElement"]) -> None:
    """Put ``replacements`` where ``element`` was, keeping the text that followed it."""
    for node in replacements:
        element.addprevious(node)
    element.drop_tree()
