from __future__ import annotations

import re
from dataclasses import dataclass, field

# Known vision-model misrecognitions seen on Japanese landing pages.
DEFAULT_REPLACEMENTS: dict[str, str] = {
    "休舌": "体重",
    "內臟": "内臓",
    "内臟": "内臓",
    "㎡": "㎠",
}

MEASUREMENT_UNITS: tuple[str, ...] = ("kg", "円", "%", "cm", "㎠")

# Labels that the model tends to print on their own line above the value.
MEASUREMENT_LABELS: tuple[str, ...] = ("体重", "体脂肪率", "体脂肪", "内臓脂肪", "ウエスト", "BMI")


def _alternation(words: tuple[str, ...]) -> str:
    return "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))


@dataclass
class TextCleaner:
    """Deterministic, order-preserving cleanup of raw OCR text.

    Never reorders or drops content lines; it only fixes known misrecognitions,
    re-joins numeric fragments split across lines, trims each line and caps
    blank-line runs at two.
    """

    replacements: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_REPLACEMENTS))
    units: tuple[str, ...] = MEASUREMENT_UNITS
    labels: tuple[str, ...] = MEASUREMENT_LABELS

    def __post_init__(self):
        """Compile patterns once on initialization."""
        units = _alternation(self.units)
        self._number_unit_re = re.compile(rf"(\d+\.?\d*)\n({units})")
        self._label_value_re = re.compile(rf"({_alternation(self.labels)})\n(\d[\d,]*\.?\d*\s*(?:{units})?)")
        self._blank_run_re = re.compile(r"\n{4,}")

    def clean(self, text: str) -> str:
        for old, new in self.replacements.items():
            text = text.replace(old, new)

        # Trim first so whitespace-only lines count as blank below.
        text = "\n".join(line.strip() for line in text.split("\n"))

        # "60\nkg" -> "60kg"
        text = self._number_unit_re.sub(r"\1\2", text)
        # "体重\n60kg" -> "体重60kg"
        text = self._label_value_re.sub(r"\1\2", text)

        # 3+ blank lines -> exactly 2
        return self._blank_run_re.sub("\n\n\n", text)


_default_cleaner = TextCleaner()


def pre_clean(text: str) -> str:
    return _default_cleaner.clean(text)
