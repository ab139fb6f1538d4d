import copy
from typing import Callable, Iterable, List, NamedTuple, Optional, Tuple

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PageElement, PreformattedString

from utils.logger import logger

# Tags whose strings never reach the rendered text
NON_RENDERED_TAGS = {"script", "style", "template", "noscript", "head", "title"}

MAX_FLUSH_ROUNDS = 50


class MutationRecord(NamedTuple):
    type: str  # "childList" or "characterData"
    target: PageElement
    added_nodes: Tuple[PageElement, ...] = ()
    removed_nodes: Tuple[PageElement, ...] = ()


MutationCallback = Callable[[List[MutationRecord]], None]


def is_text_node(node) -> bool:
    """Plain document text (comments, doctypes and CDATA excluded)."""
    return isinstance(node, NavigableString) and not isinstance(
        node, PreformattedString
    )


class HostDocument:
    """
    Structured-document capability over a BeautifulSoup tree.

    Structural writes go through this class so they can be reported to
    observers as mutation records. Records are queued and delivered in
    batches by flush(), like a browser's mutation observer checkpoint.
    Attribute writes are not reported.
    """

    def __init__(self, soup: BeautifulSoup):
        self.soup = soup
        self._observers: List[MutationCallback] = []
        self._pending: List[MutationRecord] = []

    @classmethod
    def from_html(cls, html: str, parser: str = "html.parser") -> "HostDocument":
        return cls(BeautifulSoup(html, parser))

    @property
    def body(self) -> Tag:
        return self.soup.body or self.soup

    # ----------------------------------------------------------------- queries

    def text_nodes(self, root: PageElement) -> List[NavigableString]:
        """Text nodes under root, in document order (root included if text)."""
        if isinstance(root, NavigableString):
            return [root] if is_text_node(root) else []
        if not isinstance(root, Tag):
            return []
        return [node for node in root.descendants if is_text_node(node)]

    def select(
        self, root: PageElement, selector: str, include_self: bool = False
    ) -> List[Tag]:
        """Elements under root matching a CSS selector, in document order."""
        if not isinstance(root, Tag):
            return []
        found = list(root.select(selector))
        if include_self and root is not self.soup and self.matches(root, selector):
            found.insert(0, root)
        return found

    def matches(self, element: PageElement, selector: str) -> bool:
        if not isinstance(element, Tag) or element is self.soup:
            return False
        return element.css.match(selector)

    def closest(self, node: PageElement, selector: str) -> Optional[Tag]:
        """Nearest element (node itself first) matching the selector."""
        current = node if isinstance(node, Tag) else node.parent
        while current is not None and current is not self.soup:
            if self.matches(current, selector):
                return current
            current = current.parent
        return None

    def ancestors(self, node: PageElement) -> Iterable[Tag]:
        current = node.parent
        while current is not None and current is not self.soup:
            yield current
            current = current.parent

    def is_connected(self, node: PageElement) -> bool:
        current = node
        while current is not None:
            if current is self.soup:
                return True
            current = current.parent
        return False

    def rendered_text(self, node: PageElement) -> str:
        """Approximation of innerText: visible strings concatenated."""
        if isinstance(node, NavigableString):
            return str(node) if is_text_node(node) else ""
        if not isinstance(node, Tag):
            return ""
        if node.name in NON_RENDERED_TAGS:
            return ""
        parts = []
        for text in self.text_nodes(node):
            if any(
                parent.name in NON_RENDERED_TAGS
                for parent in self._ancestors_within(text, node)
            ):
                continue
            parts.append(str(text))
        return "".join(parts)

    def _ancestors_within(self, node: PageElement, root: Tag) -> Iterable[Tag]:
        current = node.parent
        while current is not None and current is not root:
            yield current
            current = current.parent

    def is_content_editable(self, node: PageElement) -> bool:
        """Inherited contenteditable state of the element holding node."""
        current = node if isinstance(node, Tag) else node.parent
        while current is not None and current is not self.soup:
            value = current.get("contenteditable")
            if value is not None:
                return value.strip().lower() in ("", "true", "plaintext-only")
            current = current.parent
        return False

    # -------------------------------------------------------------- attributes

    def has_attr(self, element: Tag, name: str) -> bool:
        return isinstance(element, Tag) and element.has_attr(name)

    def get_attr(self, element: Tag, name: str) -> Optional[str]:
        value = element.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def set_attr(self, element: Tag, name: str, value: str):
        element[name] = value

    def remove_attr(self, element: Tag, name: str):
        if element.has_attr(name):
            del element[name]

    def classes(self, element: Tag) -> List[str]:
        value = element.get("class") or []
        if isinstance(value, str):
            return value.split()
        return list(value)

    def has_class(self, element: Tag, class_name: str) -> bool:
        return isinstance(element, Tag) and class_name in self.classes(element)

    def add_class(self, element: Tag, class_name: str):
        classes = self.classes(element)
        if class_name not in classes:
            classes.append(class_name)
        element["class"] = classes

    def remove_class(self, element: Tag, class_name: str):
        classes = [c for c in self.classes(element) if c != class_name]
        if classes:
            element["class"] = classes
        elif element.has_attr("class"):
            del element["class"]

    # --------------------------------------------------------- structure edits

    def create_element(
        self, name: str, text: Optional[str] = None, attrs: Optional[dict] = None
    ) -> Tag:
        element = self.soup.new_tag(name, attrs=attrs or {})
        if text is not None:
            element.append(NavigableString(text))
        return element

    def create_text(self, text: str) -> NavigableString:
        return NavigableString(text)

    def append_child(self, parent: Tag, node: PageElement):
        parent.append(node)
        self._record(MutationRecord("childList", parent, added_nodes=(node,)))

    def remove(self, node: PageElement):
        parent = node.parent
        if parent is None:
            return
        node.extract()
        self._record(MutationRecord("childList", parent, removed_nodes=(node,)))

    def replace_with(self, old: PageElement, *new_nodes: PageElement):
        """Replace one node with a sequence of nodes as a single change."""
        parent = old.parent
        if parent is None:
            return
        for node in new_nodes:
            old.insert_before(node)
        old.extract()
        self._record(
            MutationRecord(
                "childList", parent, added_nodes=tuple(new_nodes), removed_nodes=(old,)
            )
        )

    def set_text(self, text_node: NavigableString, value: str) -> NavigableString:
        """Change a text node's data; returns the node now in the tree."""
        replacement = NavigableString(value)
        text_node.replace_with(replacement)
        self._record(MutationRecord("characterData", replacement))
        return replacement

    # --------------------------------------------------------------- observers

    def observe(self, callback: MutationCallback):
        if callback not in self._observers:
            self._observers.append(callback)

    def unobserve(self, callback: MutationCallback):
        if callback in self._observers:
            self._observers.remove(callback)

    def _record(self, record: MutationRecord):
        if self._observers:
            self._pending.append(record)

    def take_records(self) -> List[MutationRecord]:
        records, self._pending = self._pending, []
        return records

    def flush(self, max_rounds: int = MAX_FLUSH_ROUNDS) -> int:
        """Deliver queued records until quiescent; returns rounds delivered."""
        rounds = 0
        while self._pending and rounds < max_rounds:
            batch = self.take_records()
            for callback in list(self._observers):
                callback(batch)
            rounds += 1
        if self._pending:
            logger.warning(
                "Mutation delivery did not settle",
                rounds=rounds,
                pending=len(self._pending),
            )
        return rounds

    # ----------------------------------------------------------- serialization

    def to_html(self, stylesheet: Optional[str] = None) -> str:
        """Serialize; a stylesheet is added to a copy, never the live tree."""
        if not stylesheet:
            return str(self.soup)
        rendered = copy.copy(self.soup)
        style = rendered.new_tag("style")
        style.string = stylesheet
        target = rendered.head or rendered.body or rendered
        target.append(style)
        return str(rendered)
