"""Structured security-event logging for authentication flows."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from core.env import env_str
from core.logging import get_logger

_SECURITY_LOGGER_NAME = "security"
_IP_HASH_SALT = env_str("AUDIT_LOG_IP_SALT") or ""

logger = get_logger(__name__)


def _hash_ip(ip: Optional[str]) -> Optional[str]:
    if not ip:
        return None
    payload = f"{ip}|{_IP_HASH_SALT}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class SecurityEventLogger:
    """Writes one JSON line per security event.

    Callers are responsible for masking emails before passing them in. Raw IPs
    passed as ``ip`` are replaced with a salted hash.
    """

    def __init__(self, sink: Optional[logging.Logger] = None):
        self._logger = sink or get_logger(_SECURITY_LOGGER_NAME)

    def log(self, event: str, **metadata: Any) -> None:
        record: Dict[str, Any] = {
            "event": event,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        if "ip" in metadata:
            metadata["ip_hash"] = _hash_ip(metadata.pop("ip"))
        record.update({key: value for key, value in metadata.items() if value is not None})
        try:
            line = json.dumps(record, default=str, sort_keys=True)
        except (TypeError, ValueError):
            logger.warning("Security event %s had unserialisable metadata.", event, exc_info=True)
            line = json.dumps({"event": event, "ts": record["ts"]})
        self._logger.info(line)


class RecordingSecurityEventLogger(SecurityEventLogger):
    """Keeps events in memory as well as logging them; used by tests and local tooling."""

    def __init__(self, sink: Optional[logging.Logger] = None):
        super().__init__(sink)
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def log(self, event: str, **metadata: Any) -> None:
        self.events.append((event, dict(metadata)))
        super().log(event, **metadata)

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


__all__ = ["RecordingSecurityEventLogger", "SecurityEventLogger"]
