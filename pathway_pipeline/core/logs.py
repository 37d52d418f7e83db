"""Structured JSON logging shared by every core module."""
from __future__ import annotations
import sys
import json
import time
import logging
from typing import Any, Callable, Dict

logging.basicConfig(stream=sys.stdout, level=logging.INFO, format="%(message)s")


def make_jlog(svc: str) -> Callable[[Dict[str, Any]], None]:
    """Return a jlog(obj) function bound to logger `svc`."""
    _log = logging.getLogger(svc)

    def jlog(obj: Dict[str, Any]) -> None:
        base = {"ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()), "svc": svc}
        base.update(obj)
        try:
            _log.info(json.dumps(base, sort_keys=True, default=str))
        except Exception:
            _log.info(str(base))

    return jlog
