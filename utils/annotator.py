import re
from typing import Dict, List, NamedTuple, Optional

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency as babel_format_currency
from bs4 import NavigableString, Tag
from bs4.element import PageElement

from config import DISPLAY_LOCALE
from models.schemas import DetectedAmount
from utils.currency_detect import is_no_decimal_currency
from utils.errors import FormattingError
from utils.host_document import HostDocument, is_text_node
from utils.logger import logger

# Marker shared by both annotation modes
CONVERTED_ATTR = "data-currency-converted"

# Replacement mode structure
AMOUNT_CLASS = "fx-amount"
ORIGINAL_CLASS = "fx-original"
CONVERTED_CLASS = "fx-converted"

# Attribute mode metadata (rendered by ANNOTATION_CSS, no nodes inserted)
CONVERTED_LABEL_ATTR = "data-fx-converted"
CONVERTED_BARE_ATTR = "data-fx-converted-bare"

REPLACEMENT_MODE = "replacement"
ATTRIBUTE_MODE = "attribute"

ANNOTATION_CSS = """
.fx-amount .fx-converted { margin-left: 0.25em; opacity: 0.85; }
.fx-amount .fx-converted::before { content: "("; }
.fx-amount .fx-converted::after { content: ")"; }
.fx-original[data-fx-converted]::after { content: attr(data-fx-converted); opacity: 0.85; }
body[data-fx-hide-original] .fx-amount .fx-original { display: none; }
body[data-fx-hide-original] .fx-amount .fx-converted { margin-left: 0; opacity: 1; }
body[data-fx-hide-original] .fx-amount .fx-converted::before,
body[data-fx-hide-original] .fx-amount .fx-converted::after { content: ""; }
body[data-fx-hide-original] .fx-original[data-fx-converted] { font-size: 0; }
body[data-fx-hide-original] .fx-original[data-fx-converted]::after {
  content: attr(data-fx-converted-bare); font-size: initial; opacity: 1;
}
body[data-fx-hidden] .fx-amount .fx-converted { display: none; }
body[data-fx-hidden] .fx-amount .fx-original { display: inline; }
body[data-fx-hidden] .fx-original[data-fx-converted] { font-size: inherit; }
body[data-fx-hidden] .fx-original[data-fx-converted]::after { content: none; }
"""


class AnnotationRecord(NamedTuple):
    mode: str
    element: Tag
    original_text: str
    converted_text: str
    from_currency: str
    target_currency: str
    amount: float
    had_class_attr: bool = True


class AnnotationRegistry:
    """Annotated regions of one document, keyed by element identity."""

    def __init__(self):
        self._records: Dict[int, AnnotationRecord] = {}

    def register(self, record: AnnotationRecord):
        self._records[id(record.element)] = record

    def get(self, element: PageElement) -> Optional[AnnotationRecord]:
        record = self._records.get(id(element))
        if record is not None and record.element is element:
            return record
        return None

    def records(self) -> List[AnnotationRecord]:
        return list(self._records.values())

    def clear(self):
        self._records.clear()

    def __len__(self):
        return len(self._records)

    def is_annotated(self, node: PageElement) -> bool:
        if self.get(node) is not None:
            return True
        # Markers written before this registry existed (stale input)
        return isinstance(node, Tag) and node.has_attr(CONVERTED_ATTR)

    def inside_annotation(self, node: PageElement) -> bool:
        """Node itself or any ancestor is annotated."""
        current = node
        while current is not None:
            if self.is_annotated(current):
                return True
            current = current.parent
        return False

    def contains_annotation(self, element: PageElement) -> bool:
        """Element has an annotated descendant."""
        # every registered element carries the marker attribute
        if not isinstance(element, Tag):
            return False
        return element.find(attrs={CONVERTED_ATTR: True}) is not None


def _fraction_digits(currency_code: str) -> int:
    return 0 if is_no_decimal_currency(currency_code) else 2


def _format_with_locale(amount: float, currency_code: str, decimals: int, locale: str) -> str:
    try:
        pattern = Locale.parse(locale).currency_formats["standard"].pattern
        fraction = "." + "0" * decimals if decimals else ""
        pattern = re.sub(r"\.0+", fraction, pattern)
        return babel_format_currency(
            amount,
            currency_code,
            format=pattern,
            locale=locale,
            currency_digits=False,
        )
    except (UnknownLocaleError, ValueError, TypeError, KeyError, ArithmeticError) as e:
        raise FormattingError(str(e))


def format_currency(amount: float, currency_code: str, locale: str = DISPLAY_LOCALE) -> str:
    """Locale-aware currency string; "<CODE> <amount>" if formatting fails."""
    decimals = _fraction_digits(currency_code)
    try:
        return _format_with_locale(amount, currency_code, decimals, locale)
    except FormattingError as e:
        logger.debug(
            "Currency formatting failed, using plain format",
            currency=currency_code,
            locale=locale,
            error=str(e),
        )
        return f"{currency_code} {amount:.{decimals}f}"


def annotate_node(
    doc: HostDocument,
    registry: AnnotationRegistry,
    text_node: NavigableString,
    detection: DetectedAmount,
    target_currency: str,
    rate: float,
) -> Optional[NavigableString]:
    """
    Replace the detected substring of a text node with a converted-amount
    wrapper. Returns the text node holding the untouched prefix (or None),
    so earlier detections in the same unit keep valid offsets.
    """
    parent = text_node.parent
    if parent is None:
        return None

    formatted = format_currency(detection.parsed_amount * rate, target_currency)

    text = str(text_node)
    before_text = text[: detection.start_offset]
    after_text = text[detection.end_offset :]

    wrapper = doc.create_element(
        "span", attrs={CONVERTED_ATTR: "true", "class": [AMOUNT_CLASS]}
    )
    wrapper.append(
        doc.create_element("span", detection.full_match, {"class": [ORIGINAL_CLASS]})
    )
    wrapper.append(
        doc.create_element("span", formatted, {"class": [CONVERTED_CLASS]})
    )

    before_node = doc.create_text(before_text) if before_text else None
    new_nodes = [wrapper]
    if before_node is not None:
        new_nodes.insert(0, before_node)
    if after_text:
        new_nodes.append(doc.create_text(after_text))

    doc.replace_with(text_node, *new_nodes)
    registry.register(
        AnnotationRecord(
            mode=REPLACEMENT_MODE,
            element=wrapper,
            original_text=detection.full_match,
            converted_text=formatted,
            from_currency=detection.currency_code,
            target_currency=target_currency,
            amount=detection.parsed_amount,
        )
    )
    return before_node


def annotate_element(
    doc: HostDocument,
    registry: AnnotationRegistry,
    element: Tag,
    amount: float,
    from_currency: str,
    target_currency: str,
    rate: float,
):
    """Mark a price element as converted through attributes only."""
    formatted = format_currency(amount * rate, target_currency)
    had_class_attr = element.has_attr("class")

    doc.set_attr(element, CONVERTED_ATTR, "true")
    doc.add_class(element, ORIGINAL_CLASS)
    doc.set_attr(element, CONVERTED_LABEL_ATTR, f" ({formatted})")
    doc.set_attr(element, CONVERTED_BARE_ATTR, formatted)

    registry.register(
        AnnotationRecord(
            mode=ATTRIBUTE_MODE,
            element=element,
            original_text=doc.rendered_text(element),
            converted_text=formatted,
            from_currency=from_currency,
            target_currency=target_currency,
            amount=amount,
            had_class_attr=had_class_attr,
        )
    )


def _strip_element_annotation(doc: HostDocument, element: Tag, had_class_attr: bool):
    doc.remove_attr(element, CONVERTED_ATTR)
    doc.remove_attr(element, CONVERTED_LABEL_ATTR)
    doc.remove_attr(element, CONVERTED_BARE_ATTR)
    doc.remove_class(element, ORIGINAL_CLASS)
    if had_class_attr and not element.has_attr("class"):
        element["class"] = []


def _restore_text(doc: HostDocument, wrapper: Tag, original_text: str):
    """Swap a wrapper back to text, merged with neighbouring text nodes."""
    if wrapper.parent is None:
        return

    merged = original_text
    absorbed = []
    previous_node = wrapper.previous_sibling
    next_node = wrapper.next_sibling
    if is_text_node(previous_node):
        merged = str(previous_node) + merged
        absorbed.append(previous_node)
    if is_text_node(next_node):
        merged = merged + str(next_node)
        absorbed.append(next_node)

    doc.replace_with(wrapper, doc.create_text(merged))
    for node in absorbed:
        doc.remove(node)


def remove_all_annotations(doc: HostDocument, registry: AnnotationRegistry) -> int:
    """
    Undo every annotation: attribute-mode elements lose all added metadata,
    replacement wrappers become the original text again. Returns the number
    of annotations removed.
    """
    records = registry.records()
    stale = [
        element
        for element in doc.select(doc.soup, f"[{CONVERTED_ATTR}]")
        if registry.get(element) is None
    ]

    for record in records:
        if record.mode == ATTRIBUTE_MODE:
            _strip_element_annotation(doc, record.element, record.had_class_attr)

    for record in records:
        if record.mode == REPLACEMENT_MODE:
            _restore_text(doc, record.element, record.original_text)

    for element in stale:
        if doc.has_class(element, AMOUNT_CLASS):
            original = element.find(class_=ORIGINAL_CLASS)
            _restore_text(doc, element, original.get_text() if original else "")
        else:
            _strip_element_annotation(doc, element, had_class_attr=True)

    registry.clear()

    removed = len(records) + len(stale)
    if removed:
        logger.debug(
            "Annotations removed",
            tracked=len(records),
            stale=len(stale),
        )
    return removed
