from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TypeVar

from catalog_sync.matching.normalization import normalize_text

T = TypeVar("T")

DEFAULT_EXCLUDED_WORDS = (
    "vloerverwarming",
    "ALU-foil",
    "2ekans",
    "folie set",
    "QH Grid",
    "mat set",
    "QH-Grid",
    "Stickymat",
    "mat zonder thermostaat",
)


def should_exclude(title: str | None, excluded_words: Iterable[str] = DEFAULT_EXCLUDED_WORDS) -> bool:
    text = normalize_text(title)
    if not text:
        return False
    return any(word and normalize_text(word) in text for word in excluded_words)


class ExclusionFilter:
    def __init__(self, excluded_words: Iterable[str] = DEFAULT_EXCLUDED_WORDS) -> None:
        self.excluded_words = tuple(word for word in excluded_words if word and word.strip())

    def should_exclude(self, title: str | None) -> bool:
        return should_exclude(title, self.excluded_words)

    def split(self, records: Sequence[T], title_of: Callable[[T], str | None]) -> tuple[list[T], int]:
        kept = [record for record in records if not self.should_exclude(title_of(record))]
        return kept, len(records) - len(kept)
