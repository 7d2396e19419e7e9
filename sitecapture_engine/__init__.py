"""Full-page site capture + OCR engine.

This package focuses on producing:
- one seamless full-page screenshot stitched from viewport segments
- the page's visible text (including text inside images) in reading order

Browser bot-evasion and cloud storage are out of scope.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
