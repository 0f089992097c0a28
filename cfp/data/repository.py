"""
In-process stores for businesses, crawled data and fingerprint history.

The business status is the one field written by concurrent pipeline stages,
so it only changes through ``compare_and_set_status``. Each store can
optionally mirror itself to a JSON file, which lets separate CLI invocations
share state.
"""

from __future__ import annotations

import json
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog

from cfp.core.exceptions import BusinessNotFoundError, DataAccessError
from cfp.core.models import (
    Business,
    BusinessStatus,
    CrawledData,
    FingerprintAnalysis,
    VisibilityTrend,
    utcnow,
)
from cfp.fingerprint.scoring import visibility_trend

logger = structlog.get_logger(__name__)

StatusLike = Union[BusinessStatus, str]


class _JsonMirror:
    """Loads a JSON document at start-up and rewrites it atomically on save."""

    def __init__(self, state_path: Optional[Path]):
        self.state_path = Path(state_path) if state_path else None
        if self.state_path is not None:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, Any]:
        if self.state_path is None or not self.state_path.exists():
            return {}
        try:
            return json.loads(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise DataAccessError(
                f"Failed to load state file {self.state_path}", details={"error": str(exc)}
            ) from exc

    def _write(self, raw: Dict[str, Any]) -> None:
        if self.state_path is None:
            return
        tmp_path = self.state_path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(raw, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.state_path)


def _status_set(expected: Union[StatusLike, Iterable[StatusLike]]) -> set:
    if isinstance(expected, (str, BusinessStatus)):
        return {BusinessStatus(expected).value}
    return {BusinessStatus(s).value for s in expected}


class BusinessRepository(_JsonMirror):
    """Business records keyed by id with compare-and-set status updates."""

    def __init__(self, state_path: Optional[Path] = None):
        super().__init__(state_path)
        self._lock = threading.Lock()
        self._businesses: Dict[str, Business] = {
            key: Business.model_validate(value) for key, value in self._read().items()
        }
        self.status_writes = 0

    def _save(self) -> None:
        self._write({key: b.model_dump(mode="json") for key, b in self._businesses.items()})

    def add(self, business: Business) -> Business:
        """Insert or replace a business record."""
        with self._lock:
            self._businesses[business.id] = business
            self._save()
        return business

    def get(self, business_id: str) -> Business:
        business = self._businesses.get(business_id)
        if business is None:
            raise BusinessNotFoundError(f"Business {business_id} not found")
        return business

    def find(self, business_id: str) -> Optional[Business]:
        return self._businesses.get(business_id)

    def list(self) -> List[Business]:
        return list(self._businesses.values())

    def compare_and_set_status(
        self,
        business_id: str,
        expected: Union[StatusLike, Iterable[StatusLike]],
        new: StatusLike,
        **fields: Any,
    ) -> bool:
        """
        Atomically move a business to ``new`` if its status is still ``expected``.

        Args:
            business_id: Business to update
            expected: Status (or statuses) the caller last observed
            new: Target status
            **fields: Other fields written in the same step

        Returns:
            True when the write happened, False when the status had moved on
        """
        with self._lock:
            current = self.get(business_id)
            if current.status not in _status_set(expected):
                logger.debug(
                    "status_cas_rejected",
                    business_id=business_id,
                    current=current.status,
                    expected=sorted(_status_set(expected)),
                    new=BusinessStatus(new).value,
                )
                return False
            data = current.model_dump()
            data.update(fields)
            data["status"] = BusinessStatus(new)
            data["updated_at"] = utcnow()
            self._businesses[business_id] = Business.model_validate(data)
            self.status_writes += 1
            self._save()
            return True


class CrawledDataStore(_JsonMirror):
    """Latest crawl output per business."""

    def __init__(self, state_path: Optional[Path] = None):
        super().__init__(state_path)
        self._lock = threading.Lock()
        self._data: Dict[str, CrawledData] = {
            key: CrawledData.model_validate(value) for key, value in self._read().items()
        }

    def save(self, business_id: str, crawled: CrawledData) -> None:
        with self._lock:
            self._data[business_id] = crawled
            self._write({key: c.model_dump(mode="json") for key, c in self._data.items()})

    def get(self, business_id: str) -> Optional[CrawledData]:
        return self._data.get(business_id)


class FingerprintStore(_JsonMirror):
    """
    Fingerprint analyses, upserted by business id.

    The latest analysis per business is what callers read; every distinct run
    is also kept in history for trend calculation. Saving the same run twice
    is a no-op.
    """

    def __init__(self, state_path: Optional[Path] = None):
        super().__init__(state_path)
        self._lock = threading.Lock()
        self._history: Dict[str, List[FingerprintAnalysis]] = defaultdict(list)
        for key, runs in self._read().items():
            self._history[key] = [FingerprintAnalysis.model_validate(run) for run in runs]

    def save(self, analysis: FingerprintAnalysis) -> None:
        with self._lock:
            runs = self._history[analysis.business_id]
            if any(run.run_id == analysis.run_id for run in runs):
                return
            runs.append(analysis)
            self._write(
                {
                    key: [run.model_dump(mode="json") for run in history]
                    for key, history in self._history.items()
                }
            )

    def latest(self, business_id: str) -> Optional[FingerprintAnalysis]:
        runs = self._history.get(business_id)
        return runs[-1] if runs else None

    def history(self, business_id: str) -> List[FingerprintAnalysis]:
        return list(self._history.get(business_id, []))

    def trend(self, business_id: str) -> VisibilityTrend:
        return visibility_trend(self.history(business_id))
