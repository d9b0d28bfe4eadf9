"""
Diagnostics capture and analysis for failed watchlist attempts.

This module provides:
- DiagnosticsSink: write-only interface accepting (label, screenshot, html, metadata)
- NullDiagnosticsSink: default no-op sink
- FileDiagnosticsSink: writes <label>.png / .html / .json under a directory
- DiagnosticsLog: bounded in-memory attempt history with pattern analysis
- capture_failure(): best-effort capture from a live browser

Nothing here may affect pipeline behaviour: every capture step is guarded
and failures are only logged.
"""

import json
import re
import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from runner.logging_setup import get_logger


logger = get_logger("imdb_diagnostics")

# HTML dumps larger than this are truncated
MAX_HTML_BYTES = 2 * 1024 * 1024


class DiagnosticsSink:
    """Write-only destination for failure artifacts."""

    def record(
        self,
        label: str,
        screenshot: Optional[bytes] = None,
        html: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


class NullDiagnosticsSink(DiagnosticsSink):
    """Discards everything."""

    def record(self, label, screenshot=None, html=None, metadata=None) -> None:
        return None


class FileDiagnosticsSink(DiagnosticsSink):
    """
    Writes artifacts for offline debugging.

    Files:
        <root>/<label>.png   full-page screenshot
        <root>/<label>.html  page HTML (truncated to MAX_HTML_BYTES)
        <root>/<label>.json  attempt metadata
    """

    def __init__(self, root_dir: str):
        self.root_dir = Path(root_dir)

    def record(self, label, screenshot=None, html=None, metadata=None) -> None:
        safe_label = re.sub(r"[^A-Za-z0-9_.-]", "_", label)
        try:
            self.root_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"[Diagnostics] Cannot create {self.root_dir}: {e}")
            return

        if screenshot:
            self._write(f"{safe_label}.png", screenshot)

        if html:
            encoded = html.encode("utf-8", errors="replace")
            if len(encoded) > MAX_HTML_BYTES:
                encoded = encoded[:MAX_HTML_BYTES]
            self._write(f"{safe_label}.html", encoded)

        if metadata is not None:
            payload = json.dumps(metadata, indent=2, default=str).encode("utf-8")
            self._write(f"{safe_label}.json", payload)

        logger.info(f"[Diagnostics] Saved artifacts for {safe_label} in {self.root_dir}")

    def _write(self, filename: str, data: bytes) -> None:
        try:
            (self.root_dir / filename).write_bytes(data)
        except OSError as e:
            logger.warning(f"[Diagnostics] Failed to write {filename}: {e}")


def capture_failure(
    sink: Optional[DiagnosticsSink],
    browser,
    label: str,
    metadata: Dict[str, Any],
) -> None:
    """
    Capture screenshot, HTML and metadata from a live browser.

    Each step is independently guarded; a dead page still yields metadata.
    """
    if sink is None or isinstance(sink, NullDiagnosticsSink):
        return

    screenshot = None
    html = None

    if browser is not None:
        try:
            screenshot = browser.screenshot()
        except Exception as e:
            logger.debug(f"[Diagnostics] Screenshot failed: {e}")

        try:
            html = browser.content()
        except Exception as e:
            logger.debug(f"[Diagnostics] HTML capture failed: {e}")

        try:
            metadata = dict(metadata, final_url=browser.url, page_title=browser.title())
        except Exception as e:
            logger.debug(f"[Diagnostics] Page metadata failed: {e}")

    try:
        sink.record(label, screenshot=screenshot, html=html, metadata=metadata)
    except Exception as e:
        logger.warning(f"[Diagnostics] Sink failed for {label}: {e}")


@dataclass
class AttemptRecord:
    """One attempt as seen by the diagnostics log."""
    user_id: str
    attempt_number: int
    success: bool
    item_count: int
    duration_seconds: float
    error: Optional[str] = None
    blocking_type: Optional[str] = None
    session_key: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


class DiagnosticsLog:
    """Bounded, thread-safe history of attempt records."""

    def __init__(self, max_entries: int = 1000):
        self.records: Deque[AttemptRecord] = deque(maxlen=max_entries)
        self.lock = threading.Lock()

    def log(self, record: AttemptRecord) -> None:
        with self.lock:
            self.records.append(record)

        status = "SUCCESS" if record.success else "FAILED"
        message = (
            f"[Diagnostics] {record.user_id} attempt {record.attempt_number}: {status} - "
            f"{record.item_count} items in {record.duration_seconds:.1f}s"
        )
        if record.success:
            logger.info(message)
        else:
            logger.warning(f"{message} ({record.blocking_type or 'no block signature'}: {record.error})")

    def analyze(self) -> Dict[str, Any]:
        """
        Summarize success rate and blocking patterns.

        Returns:
            Dict with total, success_rate (percent), blocking_types,
            avg_duration_seconds and recent_failures (last 10)
        """
        with self.lock:
            records = list(self.records)

        total = len(records)
        successful = sum(1 for r in records if r.success)
        blocking_types = Counter(r.blocking_type for r in records if not r.success and r.blocking_type)
        failures: List[AttemptRecord] = [r for r in records if not r.success]

        return {
            "total": total,
            "success_rate": (successful / total) * 100 if total else 0.0,
            "blocking_types": dict(blocking_types),
            "avg_duration_seconds": sum(r.duration_seconds for r in records) / total if total else 0.0,
            "recent_failures": [asdict(r) for r in failures[-10:]],
        }
