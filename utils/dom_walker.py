from typing import List, Set

from bs4 import NavigableString, Tag
from bs4.element import PageElement

from utils.annotator import AnnotationRegistry
from utils.currency_detect import (
    CURRENCY_SYMBOL_ONLY,
    HAS_NUMBER_AND_CURRENCY,
    might_contain_currency,
)
from utils.host_document import HostDocument

SKIP_TAGS = {
    "script",
    "style",
    "textarea",
    "input",
    "select",
    "code",
    "pre",
    "kbd",
    "samp",
    "svg",
    "math",
    "noscript",
    "template",
}

# Common price containers on shopping sites
PRICE_SELECTORS = ",".join(
    [
        ".a-price",  # Amazon
        '[class*="price"]',
        '[class*="Price"]',
        '[class*="cost"]',
        '[class*="Cost"]',
        '[class*="amount"]',
        '[class*="Amount"]',
        "[data-price]",
        '[itemprop="price"]',
    ]
)

# Screen-reader copies; the visible price is handled at element level
OFFSCREEN_SELECTOR = ".a-offscreen"
# Split price widgets handled by the merged-element strategy
SPLIT_PRICE_CONTAINER_SELECTOR = ".a-price"

MAX_CLIMB_DEPTH = 4
MAX_SPLIT_TEXT_LENGTH = 200


def should_skip_node(
    doc: HostDocument, registry: AnnotationRegistry, node: NavigableString
) -> bool:
    parent = node.parent
    if parent is None or not doc.is_connected(node):
        return True

    if any(ancestor.name in SKIP_TAGS for ancestor in doc.ancestors(node)):
        return True

    if doc.is_content_editable(parent):
        return True

    if registry.inside_annotation(parent):
        return True

    if doc.closest(parent, OFFSCREEN_SELECTOR) is not None:
        return True

    if doc.closest(parent, SPLIT_PRICE_CONTAINER_SELECTOR) is not None:
        return True

    return False


def find_text_nodes_with_currency(
    doc: HostDocument, registry: AnnotationRegistry, root: PageElement
) -> List[NavigableString]:
    """Leaf-text strategy: single text nodes that may hold a price ("Price: $100")."""
    results = []
    for node in doc.text_nodes(root):
        text = str(node)
        if not text.strip():
            continue
        if should_skip_node(doc, registry, node):
            continue
        if might_contain_currency(text):
            results.append(node)
    return results


def find_price_elements(
    doc: HostDocument, registry: AnnotationRegistry, root: PageElement
) -> List[Tag]:
    """
    Merged-element strategy: price-like elements whose combined text holds a
    price split over several child nodes (<span>$</span><span>100</span>).
    """
    if not isinstance(root, Tag) or not doc.is_connected(root):
        return []

    results = []
    for element in doc.select(root, PRICE_SELECTORS, include_self=True):
        if registry.inside_annotation(element):
            continue
        if registry.contains_annotation(element):
            continue

        text = doc.rendered_text(element)
        if text.strip() and might_contain_currency(text):
            results.append(element)
    return results


def find_split_currency_elements(
    doc: HostDocument, registry: AnnotationRegistry, root: PageElement
) -> List[Tag]:
    """
    Split-node strategy: a text node that is only a currency symbol
    (<span>6,980</span><span>円</span>) is resolved to the innermost ancestor,
    at most MAX_CLIMB_DEPTH levels up, whose text has both a number and a
    currency indicator.
    """
    if not isinstance(root, Tag) or not doc.is_connected(root):
        return []

    results: List[Tag] = []
    seen: Set[int] = set()

    for node in doc.text_nodes(root):
        if should_skip_node(doc, registry, node):
            continue
        if not CURRENCY_SYMBOL_ONLY.fullmatch(str(node).strip()):
            continue

        element = node.parent
        depth = 0
        while element is not None and element is not doc.soup and depth < MAX_CLIMB_DEPTH:
            if id(element) in seen:
                break
            if registry.inside_annotation(element):
                break
            if registry.contains_annotation(element):
                break
            if element.name in SKIP_TAGS:
                break

            combined_text = doc.rendered_text(element).strip()
            if len(combined_text) > MAX_SPLIT_TEXT_LENGTH:
                break

            # Both a number and a symbol, not the symbol alone
            if HAS_NUMBER_AND_CURRENCY.search(combined_text):
                seen.add(id(element))
                results.append(element)
                break

            element = element.parent
            depth += 1

    return results
