"""Page-side preparation scripts run before segment capture.

Order matters: lazy content is activated and the page auto-scrolled first, then
fixed/sticky elements are frozen exactly once (toggling ``position`` changes the
document height), and only then is the page geometry read.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .types import FreezeStats

FREEZE_SCRIPT = """
(function() {
  var STYLE_ID = '__sc-freeze-fixed-sticky-style';
  if (!document.getElementById(STYLE_ID)) {
    var style = document.createElement('style');
    style.id = STYLE_ID;
    style.textContent = '.__sc-freeze-fixed { position: absolute !important; } ' +
      '.__sc-freeze-sticky { position: relative !important; top: auto !important; bottom: auto !important; }';
    document.head.appendChild(style);
  }
  var fixedCount = 0, stickyCount = 0;
  var elements = Array.from(document.querySelectorAll('*'));
  for (var i = 0; i < elements.length; i++) {
    var el = elements[i];
    if (el === document.documentElement || el === document.body) continue;
    if (el.classList.contains('__sc-freeze-fixed')) { fixedCount++; continue; }
    if (el.classList.contains('__sc-freeze-sticky')) { stickyCount++; continue; }
    var computed = window.getComputedStyle(el);
    if (computed.display === 'none' || computed.visibility === 'hidden') continue;
    if (computed.position === 'fixed') {
      var rect = el.getBoundingClientRect();
      if (rect.width === 0 || rect.height === 0) continue;
      if (!el.hasAttribute('data-sc-original-style')) {
        el.setAttribute('data-sc-original-style', el.getAttribute('style') || '');
      }
      el.classList.add('__sc-freeze-fixed');
      el.style.setProperty('top', (rect.top + window.scrollY) + 'px', 'important');
      el.style.setProperty('left', (rect.left + window.scrollX) + 'px', 'important');
      el.style.setProperty('width', rect.width + 'px', 'important');
      el.style.setProperty('height', rect.height + 'px', 'important');
      fixedCount++;
    } else if (computed.position === 'sticky') {
      if (!el.hasAttribute('data-sc-original-style')) {
        el.setAttribute('data-sc-original-style', el.getAttribute('style') || '');
      }
      el.classList.add('__sc-freeze-sticky');
      stickyCount++;
    }
  }
  return { fixed: fixedCount, sticky: stickyCount };
})()
"""

LAZY_CONTENT_SCRIPT = """() => {
  document.querySelectorAll('img[data-src], img[data-lazy-src]').forEach((img) => {
    const dataSrc = img.getAttribute('data-src') || img.getAttribute('data-lazy-src');
    if (dataSrc) img.setAttribute('src', dataSrc);
  });
  document.querySelectorAll('video source[data-src]').forEach((source) => {
    const dataSrc = source.getAttribute('data-src');
    if (dataSrc) {
      source.setAttribute('src', dataSrc);
      if (source.parentElement && source.parentElement.load) source.parentElement.load();
    }
  });
}"""


async def freeze_fixed_elements(page: Any) -> FreezeStats:
    """Neutralize fixed/sticky elements so they appear once, at their document position.

    Idempotent: already-frozen elements are counted again but not re-measured.
    """
    raw = await page.evaluate(FREEZE_SCRIPT)
    stats = FreezeStats(fixed=int((raw or {}).get("fixed", 0)), sticky=int((raw or {}).get("sticky", 0)))
    logger.info(f"[Capture] Frozen: fixed={stats.fixed}, sticky={stats.sticky}")
    return stats


async def load_lazy_content(page: Any) -> None:
    await page.evaluate(LAZY_CONTENT_SCRIPT)


async def auto_scroll(page: Any, *, max_rounds: int = 50, wait_ms: int = 300) -> int:
    """Scroll a viewport at a time until the document height stops growing.

    Returns the number of rounds scrolled.
    """
    last_height = 0
    rounds = 0
    for rounds in range(1, max_rounds + 1):
        await page.evaluate("() => window.scrollBy(0, window.innerHeight)")
        await page.wait_for_timeout(wait_ms)
        current = int(await page.evaluate("() => document.documentElement.scrollHeight"))
        if current == last_height:
            break
        last_height = current
    logger.debug(f"[Capture] Auto-scrolled {rounds} rounds, height={last_height}px")
    return rounds
