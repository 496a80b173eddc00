"""JSONL entity store — append-only snapshots of requests, listings, settings.

Every save appends one line holding the entity's full ``to_dict()``
snapshot and a SHA-256 hash of its canonical JSON. On load, each line is
re-hashed and a mismatch is rejected; the latest line for an entity id
wins, so the file doubles as an audit trail of every state the entity
passed through.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from liquidity_gate.errors import NotFoundError, ValidationError
from liquidity_gate.providers import ENTITY_KINDS, Entity, entity_key

logger = logging.getLogger(__name__)


def record_hash(kind: str, entity_id: str, saved_utc: str, payload: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON of one stored record."""
    canonical = json.dumps(
        {
            "kind": kind,
            "entity_id": entity_id,
            "saved_utc": saved_utc,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


class JsonlEntityStore:
    """Entity store backed by a JSONL file (one snapshot per line).

    Usage:
        store = JsonlEntityStore(Path("data/entities.jsonl"))
        store.save(request)
        for entity in store.load_all():
            ...
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)
        self._latest: Dict[Tuple[str, str], dict[str, Any]] = {}
        self._history_count = 0
        self._lock = threading.Lock()

        if self._storage_path.exists():
            self._load_from_file(self._storage_path)

    def save(self, entity: Entity, saved_utc: Optional[datetime] = None) -> None:
        kind, entity_id = entity_key(entity)
        ts = (saved_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        payload = entity.to_dict()
        record = {
            "kind": kind,
            "entity_id": entity_id,
            "saved_utc": ts,
            "payload": payload,
            "record_hash": record_hash(kind, entity_id, ts, payload),
        }
        with self._lock:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")
            self._latest[(kind, entity_id)] = payload
            self._history_count += 1

    def load_all(self) -> Iterator[Entity]:
        """Yield the latest snapshot of every stored entity."""
        with self._lock:
            items = list(self._latest.items())
        for (kind, _), payload in items:
            yield ENTITY_KINDS[kind].from_dict(payload)

    def get(self, kind: str, entity_id: str) -> dict[str, Any]:
        payload = self._latest.get((kind, entity_id))
        if payload is None:
            raise NotFoundError(f"No stored {kind}: {entity_id}")
        return dict(payload)

    def ids(self, kind: str) -> List[str]:
        return sorted(eid for k, eid in self._latest if k == kind)

    @property
    def count(self) -> int:
        """Number of distinct entities."""
        return len(self._latest)

    @property
    def history_count(self) -> int:
        """Number of snapshots written, including superseded ones."""
        return self._history_count

    def _load_from_file(self, path: Path) -> None:
        """Load snapshots with integrity verification.

        Fail-closed: a tampered line (hash mismatch) or an unknown entity
        kind rejects the whole file.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                kind = data["kind"]
                if kind not in ENTITY_KINDS:
                    raise ValidationError(f"Unknown entity kind (line {line_num}): {kind}")

                expected = record_hash(
                    kind, data["entity_id"], data["saved_utc"], data["payload"],
                )
                if data["record_hash"] != expected:
                    raise ValidationError(
                        f"Integrity check failed (line {line_num}): {kind} "
                        f"{data['entity_id']} stored hash {data['record_hash']} "
                        f"!= computed {expected}"
                    )
                self._latest[(kind, data["entity_id"])] = data["payload"]
                self._history_count += 1

        logger.info(
            "Loaded %d snapshot(s) of %d entities from %s",
            self._history_count, len(self._latest), path,
        )
