"""Capture of listing/detail response bodies for the structured channel."""

from __future__ import annotations

import json
import logging
from typing import Optional, Sequence

from harvester.core.models import HarvestSession
from harvester.core.surface import NetworkExchange, RenderSurface

logger = logging.getLogger(__name__)

ENDPOINT_MARKERS = ("/maps/search", "/maps/place")
TEXTUAL_CONTENT_MARKERS = ("json", "text")
MIN_BODY_LENGTH = 100
MIN_SHIM_LENGTH = 50
SHIM_ELEMENT_ID = "searchAPIResponseData"
SHIM_SOURCE = "xhr-shim"

# Mirrors bodies of in-page XHRs (invisible to response observation in some
# setups) into a hidden element; each capture overwrites the previous one.
XHR_SHIM_SCRIPT = """
(() => {
  const markers = %(markers)s;
  const proto = XMLHttpRequest.prototype;
  const open = proto.open;
  const send = proto.send;
  proto.open = function (method, url) {
    this.__harvestUrl = url;
    return open.apply(this, arguments);
  };
  proto.send = function () {
    this.addEventListener('load', function () {
      const url = String(this.__harvestUrl || '');
      if (!markers.some((m) => url.includes(m))) return;
      try {
        let el = document.getElementById('%(element_id)s');
        if (!el) {
          el = document.createElement('div');
          el.id = '%(element_id)s';
          el.style.height = 0;
          el.style.overflow = 'hidden';
          document.body.appendChild(el);
        }
        el.innerText = this.responseText;
      } catch (err) {}
    });
    return send.apply(this, arguments);
  };
})();
""" % {"markers": json.dumps(list(ENDPOINT_MARKERS)), "element_id": SHIM_ELEMENT_ID}

READ_SHIM_JS = (
    "(id) => { const el = document.getElementById(id); return el ? el.innerText : null; }"
)


class ResponseInterceptor:
    """Attach to a surface and deposit matching response bodies into a session."""

    def __init__(
        self,
        session: HarvestSession,
        *,
        endpoint_markers: Sequence[str] = ENDPOINT_MARKERS,
        min_body_length: int = MIN_BODY_LENGTH,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.session = session
        self.endpoint_markers = tuple(endpoint_markers)
        self.min_body_length = min_body_length
        self.logger = logger or logging.getLogger(__name__)
        self.total_seen = 0
        self.total_stored = 0

    def matches(self, exchange: NetworkExchange) -> bool:
        if not any(marker in exchange.url for marker in self.endpoint_markers):
            return False
        content_type = (exchange.content_type or "").lower()
        return any(marker in content_type for marker in TEXTUAL_CONTENT_MARKERS)

    async def on_exchange(self, exchange: NetworkExchange) -> None:
        self.total_seen += 1
        try:
            body = await exchange.read_body()
        except Exception as exc:  # noqa: BLE001
            self.logger.debug("Unreadable body from %s: %s", exchange.url, exc)
            return

        if not body or len(body) <= self.min_body_length:
            return

        self.session.add_capture(exchange.url, body)
        self.total_stored += 1
        self.logger.debug("Captured payload from %s (len=%s)", exchange.url, len(body))

    async def attach(self, surface: RenderSurface) -> None:
        await surface.add_init_script(XHR_SHIM_SCRIPT)
        surface.on_network_exchange(self.matches, self.on_exchange)

    async def snapshot_shim(self, surface: RenderSurface) -> bool:
        """Copy the latest shimmed capture into the session; True when one was taken."""
        try:
            text = await surface.evaluate(READ_SHIM_JS, SHIM_ELEMENT_ID)
        except Exception as exc:  # noqa: BLE001
            self.logger.debug("Could not read shim element: %s", exc)
            return False

        if not text or len(text) < MIN_SHIM_LENGTH:
            return False

        self.session.add_capture(SHIM_SOURCE, text)
        self.logger.debug("Snapshotted shim capture (len=%s)", len(text))
        return True
