import re
from typing import Dict

from bs4 import Tag
from bs4.element import PageElement

from utils.host_document import HostDocument
from utils.logger import logger

# Loyalty-point badges ("10pt", "ポイント") are not prices; they are hidden
POINT_KEYWORDS = re.compile(r"ポイント|獲得|エントリー|[0-9]pt[\s(]|[0-9]pt$")

POINT_SELECTORS = ",".join(
    [
        "#loyalty-points-offer",
        '[class*="loyaltyPoints"]',
        '[class*="LoyaltyPoints"]',
        '[class*="loyalty-points"]',
        '[id*="loyaltyPoints"]',
        '[id*="loyalty-points"]',
    ]
)

POINT_HIDDEN_ATTR = "data-fx-point-hidden"
# Style attribute value before hiding, absent if the element had none
POINT_STYLE_ATTR = "data-fx-point-style"

MAX_POINT_TEXT_LENGTH = 80
MAX_POINT_CLIMB = 3
IGNORED_PARENTS = {"script", "style", "noscript", "template", "textarea"}


def _hide(doc: HostDocument, element: Tag):
    previous_style = doc.get_attr(element, "style")
    if previous_style is not None:
        doc.set_attr(element, POINT_STYLE_ATTR, previous_style)
        base = previous_style.strip().rstrip(";")
        style = f"{base}; display: none" if base else "display: none"
    else:
        style = "display: none"
    doc.set_attr(element, POINT_HIDDEN_ATTR, "true")
    doc.set_attr(element, "style", style)


def hide_point_elements(doc: HostDocument, root: PageElement) -> int:
    """Hide loyalty-point elements under root; returns how many were hidden."""
    if not isinstance(root, Tag):
        return 0

    to_hide: Dict[int, Tag] = {}

    # Text-based detection (site independent)
    for node in doc.text_nodes(root):
        if node.parent is None or node.parent.name in IGNORED_PARENTS:
            continue
        if not POINT_KEYWORDS.search(str(node).strip()):
            continue

        element = node.parent
        # Climb to a reasonably small container
        for _ in range(MAX_POINT_CLIMB):
            parent = element.parent
            if parent is None or parent is doc.soup or parent is doc.body:
                break
            if len(doc.rendered_text(parent).strip()) > MAX_POINT_TEXT_LENGTH:
                break
            element = parent

        # Only small badges, never long descriptions
        if len(doc.rendered_text(element).strip()) <= MAX_POINT_TEXT_LENGTH:
            if not doc.has_attr(element, POINT_HIDDEN_ATTR):
                to_hide[id(element)] = element

    # Selector-based detection (Amazon loyalty widgets)
    for element in doc.select(root, POINT_SELECTORS, include_self=True):
        if not doc.has_attr(element, POINT_HIDDEN_ATTR):
            to_hide[id(element)] = element

    for element in to_hide.values():
        _hide(doc, element)

    if to_hide:
        logger.debug("Point elements hidden", count=len(to_hide))
    return len(to_hide)


def show_point_elements(doc: HostDocument) -> int:
    """Reverse every hide, restoring the exact previous style attribute."""
    hidden = doc.select(doc.soup, f"[{POINT_HIDDEN_ATTR}]")
    for element in hidden:
        previous_style = doc.get_attr(element, POINT_STYLE_ATTR)
        doc.remove_attr(element, POINT_HIDDEN_ATTR)
        doc.remove_attr(element, POINT_STYLE_ATTR)
        if previous_style is not None:
            doc.set_attr(element, "style", previous_style)
        else:
            doc.remove_attr(element, "style")
    return len(hidden)
