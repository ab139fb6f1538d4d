import asyncio
import math
import random
import uuid
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Set

from bs4 import NavigableString, Tag
from bs4.element import PageElement

from config import RATE_BASE_CURRENCY, REPASS_DELAYS, DEFAULT_TARGET_CURRENCY
from models.schemas import CachedRates, PassStatistics, UserPreferences
from utils.annotator import (
    AnnotationRegistry,
    annotate_element,
    annotate_node,
    remove_all_annotations,
)
from utils.currency_detect import (
    SUPPORTED_CURRENCIES,
    detect_currencies,
    guess_currency_from_text,
)
from utils.currency_validator import require_rate
from utils.dom_walker import (
    find_price_elements,
    find_split_currency_elements,
    find_text_nodes_with_currency,
)
from utils.errors import RateUnavailableError, UnresolvableRateError
from utils.host_document import HostDocument, MutationRecord
from utils.logger import logger, set_correlation_id
from utils.point_elements import hide_point_elements, show_point_elements
from utils.preferences import PreferenceStore

HIDDEN_ATTR = "data-fx-hidden"
HIDE_ORIGINAL_ATTR = "data-fx-hide-original"

# Never picked by random target selection
RANDOM_EXCLUDED_CURRENCIES = {"JPY"}

RELOAD_PREFERENCES = {"enabled", "target_currency", "random_currency"}
PRESENTATION_PREFERENCES = {"hidden", "hide_original"}


class ControllerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RATES_PENDING = "rates_pending"
    ACTIVE = "active"


class RateSource(Protocol):
    async def get_rates(self, base_currency: str, force_refresh: bool = False) -> CachedRates:
        ...

    def peek(self, base_currency: str) -> Optional[CachedRates]:
        ...

    def is_fresh(self, rates: CachedRates) -> bool:
        ...


class EngineState:
    """Mutable state of one document view."""

    def __init__(self):
        self.phase = ControllerState.UNINITIALIZED
        self.target_currency = DEFAULT_TARGET_CURRENCY
        self.enabled = True
        self.hidden = False
        self.hide_original = True
        self.random_currency = True
        self.rates: Dict[str, float] = {}
        self.rates_ready = False
        self.auto_fallback_attempted = False


class PageController:
    """
    Drives classification, detection and annotation for one document view.

    Uninitialized -> RatesPending on start(); RatesPending -> Active once a
    rate table is available. No detection runs before Active.
    """

    def __init__(
        self,
        document: HostDocument,
        rate_source: RateSource,
        preferences: PreferenceStore,
        rng: Optional[random.Random] = None,
        base_currency: str = RATE_BASE_CURRENCY,
        view_id: Optional[str] = None,
    ):
        self.doc = document
        self.rate_source = rate_source
        self.preferences = preferences
        self.rng = rng or random.Random()
        self.base_currency = base_currency
        self.view_id = view_id or uuid.uuid4().hex[:8]

        self.registry = AnnotationRegistry()
        self.state = EngineState()
        self.last_pass = PassStatistics()
        self.passes = 0

        self._timers: List[asyncio.TimerHandle] = []
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> ControllerState:
        return self.state.phase

    @property
    def is_active(self) -> bool:
        return (
            self.state.phase == ControllerState.ACTIVE
            and self.state.rates_ready
            and self.state.enabled
        )

    # ------------------------------------------------------------- lifecycle

    async def start(self) -> ControllerState:
        """Initialize the view and wait for rates; never raises on rate failure."""
        set_correlation_id(self.view_id)

        # Clean up annotations left in the input document
        remove_all_annotations(self.doc, self.registry)

        self._apply_preferences(self.preferences.get_snapshot())
        self.doc.observe(self.handle_mutations)
        self.preferences.subscribe(self.on_preferences_changed)
        self.state.phase = ControllerState.RATES_PENDING

        logger.info(
            "View initialized",
            enabled=self.state.enabled,
            random=self.state.random_currency,
            target=self.state.target_currency,
        )

        if not self.state.enabled:
            return self.state.phase

        # Cached table first, no provider round-trip
        cached = self.rate_source.peek(self.base_currency)
        if cached is not None and cached.base == self.base_currency and cached.rates:
            self._install_rates(cached)
            self._activate("cached")
            if not self.rate_source.is_fresh(cached):
                self._refresh_task = asyncio.ensure_future(self.refresh_rates())
            return self.state.phase

        await self._load_rates_and_activate()
        return self.state.phase

    async def _load_rates_and_activate(self):
        try:
            rates = await self.rate_source.get_rates(self.base_currency)
        except RateUnavailableError as e:
            logger.warning("Exchange rates unavailable, view stays pending", error=str(e))
            return

        self._install_rates(rates)
        if self.state.enabled and not self.state.rates_ready:
            self._activate("fetched")

    def _install_rates(self, rates: CachedRates):
        self.state.rates = dict(rates.rates)
        logger.debug(
            "Rate table installed",
            base=rates.base,
            date=rates.date,
            currencies=len(rates.rates),
        )

    def _activate(self, source: str):
        self.state.rates_ready = True
        self.state.phase = ControllerState.ACTIVE
        self.apply_body_attributes()
        logger.info("Rates ready, processing document", source=source)
        self.process_node(self.doc.body)

    def schedule_repasses(self, delays=REPASS_DELAYS):
        """Timed full re-passes for content rendered after load."""
        loop = asyncio.get_running_loop()
        for delay in delays:
            self._timers.append(
                loop.call_later(delay, self._timed_reprocess, f"delayed-{delay:g}s")
            )

    def _timed_reprocess(self, label: str):
        self.full_reprocess(label)
        self.doc.flush()

    def stop(self):
        """Tear down the view: timers, subscriptions, background refresh."""
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self.doc.unobserve(self.handle_mutations)
        self.preferences.unsubscribe(self.on_preferences_changed)

    async def refresh_rates(self) -> bool:
        """Fetch a fresh table; keep the held one if the provider fails."""
        try:
            rates = await self.rate_source.get_rates(self.base_currency, force_refresh=True)
        except RateUnavailableError as e:
            logger.warning("Rate refresh failed, keeping current table", error=str(e))
            return False

        self._install_rates(rates)
        if self.is_active:
            self.full_reprocess("rates refreshed")
            self.doc.flush()
        elif self.state.enabled and self.state.phase == ControllerState.RATES_PENDING:
            self._activate("refreshed")
        return True

    # ----------------------------------------------------------- preferences

    def _pick_target_currency(self, preferences: UserPreferences) -> str:
        if preferences.random_currency:
            candidates = [
                c for c in SUPPORTED_CURRENCIES if c not in RANDOM_EXCLUDED_CURRENCIES
            ]
            return self.rng.choice(candidates)
        return preferences.target_currency or DEFAULT_TARGET_CURRENCY

    def _apply_preferences(self, preferences: UserPreferences):
        self.state.enabled = preferences.enabled
        self.state.hidden = preferences.hidden
        self.state.hide_original = preferences.hide_original
        self.state.random_currency = preferences.random_currency
        self.state.target_currency = self._pick_target_currency(preferences)

    def apply_body_attributes(self):
        body = self.doc.soup.body
        if body is None:
            return
        for attr, flag in (
            (HIDDEN_ATTR, self.state.hidden),
            (HIDE_ORIGINAL_ATTR, self.state.hide_original),
        ):
            if flag:
                self.doc.set_attr(body, attr, "true")
            else:
                self.doc.remove_attr(body, attr)

    def on_preferences_changed(self, changed: Set[str], snapshot: UserPreferences):
        if changed & PRESENTATION_PREFERENCES:
            self.state.hidden = snapshot.hidden
            self.state.hide_original = snapshot.hide_original
            self.apply_body_attributes()

        if not changed & RELOAD_PREFERENCES:
            return

        self._apply_preferences(snapshot)
        logger.info(
            "Preferences changed",
            changed=sorted(changed),
            enabled=self.state.enabled,
            target=self.state.target_currency,
        )

        if not self.state.enabled:
            remove_all_annotations(self.doc, self.registry)
            show_point_elements(self.doc)
            return

        if not self.state.rates_ready:
            cached = self.rate_source.peek(self.base_currency)
            if cached is not None and cached.rates:
                self._install_rates(cached)
                self._activate("cached")
            return

        remove_all_annotations(self.doc, self.registry)
        show_point_elements(self.doc)
        self.apply_body_attributes()
        self.process_node(self.doc.body)

    # ------------------------------------------------------------ processing

    def full_reprocess(self, label: str) -> Optional[PassStatistics]:
        if not self.is_active:
            return None
        logger.info(f"{label}, re-processing")
        remove_all_annotations(self.doc, self.registry)
        show_point_elements(self.doc)
        return self.process_node(self.doc.body)

    def handle_mutations(self, records: List[MutationRecord]):
        """React to structural changes; the engine's own wrappers are ignored."""
        if not self.is_active:
            return

        roots: Dict[int, PageElement] = {}
        for record in records:
            if record.type == "childList":
                for node in record.added_nodes:
                    if self.registry.is_annotated(node):
                        continue
                    roots[id(node)] = node
            elif record.type == "characterData" and record.target.parent is not None:
                roots[id(record.target.parent)] = record.target.parent

        for node in roots.values():
            if not self.doc.is_connected(node):
                continue
            self.process_node(node)

    def _guarded(self, func: Callable, *args) -> int:
        """Run one region's work; a failure never aborts the pass."""
        try:
            return func(*args) or 0
        except Exception as e:
            logger.warning(
                "Region processing failed",
                step=func.__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            return 0

    def process_node(self, root: PageElement) -> PassStatistics:
        stats = PassStatistics()
        if not self.is_active or root is None:
            return stats

        target = self.state.target_currency

        # Strategy 1: single text nodes
        text_nodes = find_text_nodes_with_currency(self.doc, self.registry, root)
        stats.text_nodes = len(text_nodes)
        for node in text_nodes:
            stats.converted += self._guarded(self._convert_text_node, node, target)

        # Strategy 2: price elements, innermost first
        price_elements = list(
            reversed(find_price_elements(self.doc, self.registry, root))
        )
        stats.price_elements = len(price_elements)
        for element in price_elements:
            stats.converted += self._guarded(self._convert_price_element, element, target)

        # Strategy 3: symbol and number in separate nodes
        split_elements = find_split_currency_elements(self.doc, self.registry, root)
        stats.split_elements = len(split_elements)
        for element in split_elements:
            stats.converted += self._guarded(self._convert_split_element, element, target)

        stats.points_hidden = self._guarded(hide_point_elements, self.doc, root)

        if root is self.doc.body:
            self.passes += 1
            self.last_pass = stats
            logger.info(
                "Document pass complete",
                target=target,
                text_nodes=stats.text_nodes,
                price_elements=stats.price_elements,
                split_elements=stats.split_elements,
                converted=stats.converted,
                rate_keys=len(self.state.rates),
            )
            if self._should_fall_back(stats):
                return self._fall_back(target)

        return stats

    def _should_fall_back(self, stats: PassStatistics) -> bool:
        return (
            stats.converted == 0
            and (stats.text_nodes > 0 or stats.price_elements > 0)
            and not self.state.auto_fallback_attempted
        )

    def _fall_back(self, target: str) -> PassStatistics:
        """Prices found but none converted: the page is probably in the target currency."""
        self.state.auto_fallback_attempted = True
        fallback = "EUR" if target == "USD" else "USD"
        logger.info(
            "No conversions, target likely matches page currency",
            target=target,
            fallback=fallback,
        )
        self.state.target_currency = fallback
        return self.process_node(self.doc.body)

    def _convert_text_node(self, node: NavigableString, target: str) -> int:
        """Annotate every convertible amount of a text node, right to left."""
        detections = detect_currencies(str(node))
        converted = 0
        current = node
        for detection in reversed(detections):
            try:
                rate = require_rate(self.state.rates, detection.currency_code, target)
            except UnresolvableRateError:
                continue
            before = annotate_node(self.doc, self.registry, current, detection, target, rate)
            converted += 1
            if before is None:
                break
            current = before
        return converted

    def _already_handled(self, element: Tag) -> bool:
        return self.registry.inside_annotation(element) or self.registry.contains_annotation(
            element
        )

    def _annotate_first_detection(self, element: Tag, text: str, target: str) -> Optional[int]:
        detections = detect_currencies(text)
        if not detections:
            return None
        detection = detections[0]
        try:
            rate = require_rate(self.state.rates, detection.currency_code, target)
        except UnresolvableRateError:
            return 0
        annotate_element(
            self.doc,
            self.registry,
            element,
            detection.parsed_amount,
            detection.currency_code,
            target,
            rate,
        )
        return 1

    def _convert_price_element(self, element: Tag, target: str) -> int:
        if self._already_handled(element):
            return 0

        text = self.doc.rendered_text(element).strip()
        result = self._annotate_first_detection(element, text, target)
        if result is not None:
            return result

        # Machine-readable price attribute with the currency guessed from text
        price_attr = self.doc.get_attr(element, "data-price") or self.doc.get_attr(
            element, "content"
        )
        if not price_attr:
            return 0
        try:
            amount = float(price_attr)
        except ValueError:
            return 0
        if not (math.isfinite(amount) and amount > 0):
            return 0

        currency_code = guess_currency_from_text(text)
        if currency_code is None:
            return 0
        try:
            rate = require_rate(self.state.rates, currency_code, target)
        except UnresolvableRateError:
            return 0

        annotate_element(self.doc, self.registry, element, amount, currency_code, target, rate)
        return 1

    def _convert_split_element(self, element: Tag, target: str) -> int:
        if self._already_handled(element):
            return 0
        text = self.doc.rendered_text(element).strip()
        return self._annotate_first_detection(element, text, target) or 0

    # --------------------------------------------------------------- reports

    def annotation_summary(self) -> List[Dict[str, str]]:
        return [
            {
                "mode": record.mode,
                "original": record.original_text,
                "converted": record.converted_text,
                "from_currency": record.from_currency,
                "to_currency": record.target_currency,
            }
            for record in self.registry.records()
        ]
