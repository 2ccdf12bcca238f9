"""Pure detection strategies over snapshots of the maps page controls.

Each strategy takes the list of `ControlSnapshot` produced by the in-page
snapshot script and returns the control to click, or None. Strategies are
tried in order; the first hit wins.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

from app.core.text import turkish_lower

CONSENT_TITLE_MARKERS = ("devam etmeden", "before you continue")
REVIEW_TAB_LABELS = {"yorumlar", "reviews", "google yorumları", "google reviews"}
REVIEW_WORDS = ("yorum", "review")
REVIEW_COUNT_RE = re.compile(r"^\(?\d[\d.,]*\)?\s*(yorum|review)", re.IGNORECASE)
REVIEW_SEARCH_LABELS = ("yorumlarda", "search reviews")
SORT_LABELS = ("en alakalı", "most relevant", "sırala", "sort")
NEWEST_LABELS = ("en yeni", "newest")
OPTION_ROLES = {"menuitemradio", "option"}


@dataclass(frozen=True)
class ControlSnapshot:
    idx: int
    tag: str
    text: str = ""
    aria_label: str = ""
    role: str = ""
    placeholder: str = ""
    in_tablist: bool = False
    tab_position: int = -1
    near_rating: bool = False

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> "ControlSnapshot":
        return cls(
            idx=int(raw["idx"]),
            tag=raw.get("tag", ""),
            text=raw.get("text", "") or "",
            aria_label=raw.get("aria_label", "") or "",
            role=raw.get("role", "") or "",
            placeholder=raw.get("placeholder", "") or "",
            in_tablist=bool(raw.get("in_tablist")),
            tab_position=int(raw.get("tab_position", -1)),
            near_rating=bool(raw.get("near_rating")),
        )

    @property
    def label(self) -> str:
        return turkish_lower(self.aria_label.strip())

    @property
    def lower_text(self) -> str:
        return turkish_lower(self.text.strip())

    @property
    def clickable(self) -> bool:
        return self.tag in {"button", "a"} or self.role in {"button", "tab"}


Strategy = Callable[[Sequence[ControlSnapshot]], Optional[ControlSnapshot]]


def is_consent_page(title: str, url: str = "") -> bool:
    lowered = turkish_lower(title or "")
    return any(marker in lowered for marker in CONSENT_TITLE_MARKERS) or "consent.google" in (url or "")


def place_panel_ready(signals: dict[str, bool]) -> bool:
    return bool(signals.get("has_main")) and bool(signals.get("has_heading"))


def results_feed_ready(signals: dict[str, bool]) -> bool:
    return bool(signals.get("has_feed"))


def _mentions_reviews(control: ControlSnapshot) -> bool:
    return any(word in control.label or word in control.lower_text for word in REVIEW_WORDS)


def _tab_candidates(controls: Iterable[ControlSnapshot]) -> list[ControlSnapshot]:
    return [c for c in controls if c.tag != "input"]


def by_exact_label(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in _tab_candidates(controls):
        if control.lower_text in REVIEW_TAB_LABELS or control.label in REVIEW_TAB_LABELS:
            return control
    return None


def by_review_count(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in _tab_candidates(controls):
        if REVIEW_COUNT_RE.match(control.text.strip()) or REVIEW_COUNT_RE.match(control.aria_label.strip()):
            return control
    return None


def by_role_tab(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in _tab_candidates(controls):
        if control.role == "tab" and _mentions_reviews(control):
            return control
    return None


def by_tablist_scan(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    """Children of the tab list: a reviews-looking one, else the third tab."""
    tabs = sorted(
        (c for c in _tab_candidates(controls) if c.in_tablist and c.tab_position >= 0),
        key=lambda c: c.tab_position,
    )
    for tab in tabs:
        if _mentions_reviews(tab):
            return tab
    if len(tabs) >= 3:
        return tabs[2]
    return None


def by_rating_proximity(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in _tab_candidates(controls):
        if control.near_rating and control.clickable and any(ch.isdigit() for ch in control.text + control.aria_label):
            return control
    return None


REVIEW_TAB_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("exact-label", by_exact_label),
    ("review-count", by_review_count),
    ("role-tab", by_role_tab),
    ("tablist-scan", by_tablist_scan),
    ("rating-proximity", by_rating_proximity),
)


def reviews_control_candidates(
    controls: Sequence[ControlSnapshot],
    strategies: Sequence[tuple[str, Strategy]] = REVIEW_TAB_STRATEGIES,
) -> Iterator[tuple[str, ControlSnapshot]]:
    """Yield (strategy name, control) in cascade order, each control once."""
    tried: set[int] = set()
    for name, strategy in strategies:
        control = strategy(controls)
        if control is not None and control.idx not in tried:
            tried.add(control.idx)
            yield name, control


def choose_reviews_control(controls: Sequence[ControlSnapshot]) -> Optional[tuple[str, ControlSnapshot]]:
    return next(reviews_control_candidates(controls), None)


def choose_review_search_input(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    inputs = [c for c in controls if c.tag == "input"]
    for control in inputs:
        if any(label in control.label for label in REVIEW_SEARCH_LABELS):
            return control
    for control in inputs:
        placeholder = turkish_lower(control.placeholder)
        if ("ara" in placeholder or "search" in placeholder) and "yorum" in (control.label + placeholder):
            return control
    return None


def choose_sort_control(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in controls:
        if control.tag == "input" or control.role in OPTION_ROLES:
            continue
        if not (control.tag == "button" or control.role == "button"):
            continue
        haystack = f"{control.lower_text} {control.label}"
        if any(label in haystack for label in SORT_LABELS):
            return control
    return None


def choose_newest_option(controls: Sequence[ControlSnapshot]) -> Optional[ControlSnapshot]:
    for control in controls:
        if control.role not in OPTION_ROLES:
            continue
        if any(label in control.lower_text for label in NEWEST_LABELS):
            return control
    return None
