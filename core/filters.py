# core/filters.py

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

Predicate = Callable[[str], bool]


class FilterMode(Enum):
    ALLOW_ALL = "AllowAll"
    INCLUDE_ONLY = "IncludeOnly"
    EXCLUDE = "Exclude"


def parse_filter_mode(value: Optional[str]) -> FilterMode:
    """Parse a config value, falling back to AllowAll"""
    if isinstance(value, FilterMode):
        return value
    if value:
        wanted = str(value).strip().replace("_", "").lower()
        for mode in FilterMode:
            if wanted in (mode.value.lower(), mode.name.replace("_", "").lower()):
                return mode
    return FilterMode.ALLOW_ALL


@dataclass(frozen=True)
class LabelScore:
    """A single classification label with its confidence"""
    label: str
    confidence: float


class DetectionCache:
    """
    Thread-safe store of classification results keyed by identifier.

    Classifiers run elsewhere and write results in; the sequence index only
    reads them through lookup() when a filter is applied.
    """

    def __init__(self):
        self._results: Dict[str, List[LabelScore]] = {}
        self._lock = threading.Lock()

    def store(self, identifier: str, labels: Iterable) -> None:
        """
        Record labels for an identifier.

        Accepts LabelScore instances or (label, confidence) pairs.
        """
        scores = [
            item if isinstance(item, LabelScore) else LabelScore(str(item[0]), float(item[1]))
            for item in labels
        ]
        with self._lock:
            self._results[identifier] = scores

    def lookup(self, identifier: str) -> Optional[List[LabelScore]]:
        with self._lock:
            scores = self._results.get(identifier)
            return list(scores) if scores is not None else None

    def contains(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._results

    def discard(self, identifier: str) -> None:
        with self._lock:
            self._results.pop(identifier, None)

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def labels_match(labels: Optional[Sequence[LabelScore]],
                 match_text: str,
                 threshold: float) -> bool:
    """True if any label contains match_text with confidence >= threshold"""
    if not labels:
        return False
    needle = match_text.strip().lower()
    return any(
        score.confidence >= threshold and needle in score.label.lower()
        for score in labels
    )


def allow_all(identifier: str) -> bool:
    return True


def build_predicate(provider: DetectionCache,
                    mode: FilterMode,
                    match_text: str,
                    threshold: float) -> Predicate:
    """
    Build an identifier predicate for a filter mode.

    Identifiers without a stored result count as not matching, so they are
    hidden by INCLUDE_ONLY and kept by EXCLUDE.
    """
    mode = parse_filter_mode(mode)
    if mode is FilterMode.ALLOW_ALL or not (match_text or "").strip():
        return allow_all

    def predicate(identifier: str) -> bool:
        matched = labels_match(provider.lookup(identifier), match_text, threshold)
        if mode is FilterMode.INCLUDE_ONLY:
            return matched
        return not matched

    return predicate


def combine_predicates(*predicates: Predicate) -> Predicate:
    """AND several predicates, skipping the allow-all ones"""
    active = [p for p in predicates if p is not allow_all]
    if not active:
        return allow_all
    if len(active) == 1:
        return active[0]

    def combined(identifier: str) -> bool:
        return all(p(identifier) for p in active)

    return combined
