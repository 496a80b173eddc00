"""Collaborator contracts — where the gateway meets the outside world.

The engine never talks to an identity vendor, a settings database, or a
transfer agent directly. It talks to these Protocols:

- ComplianceProvider: read-only KYC / accreditation state per investor.
- SettingsStore: per-offering liquidity program settings.
- EntityStore: persistence for requests, listings and settings.
- OwnershipTransfer: executes a secondary-market settlement (optional).

In-memory implementations are provided for embedding and tests. A
file-backed EntityStore lives in ``liquidity_gate.persistence``.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterator, List, Protocol, Tuple, Union, runtime_checkable

from liquidity_gate.errors import NotFoundError, ValidationError
from liquidity_gate.models.compliance import ComplianceState
from liquidity_gate.models.liquidity import LiquidityProgramSettings, LiquidityRequest
from liquidity_gate.models.secondary import PurchaseSettlement, SecondaryListing

Entity = Union[LiquidityRequest, SecondaryListing, LiquidityProgramSettings]

ENTITY_KINDS: Dict[str, type] = {
    "liquidity_request": LiquidityRequest,
    "secondary_listing": SecondaryListing,
    "liquidity_settings": LiquidityProgramSettings,
}


def entity_key(entity: Entity) -> Tuple[str, str]:
    """Return (kind, id) for a persistable entity."""
    if isinstance(entity, LiquidityRequest):
        return "liquidity_request", entity.request_id
    if isinstance(entity, SecondaryListing):
        return "secondary_listing", entity.listing_id
    if isinstance(entity, LiquidityProgramSettings):
        return "liquidity_settings", entity.offering_id
    raise ValidationError(f"Not a persistable entity: {type(entity).__name__}")


@runtime_checkable
class ComplianceProvider(Protocol):
    """Source of investor compliance state. Read-only to the engine."""

    def get_compliance_state(self, investor_id: str) -> ComplianceState:
        ...


@runtime_checkable
class SettingsStore(Protocol):
    """Source of per-offering liquidity program settings."""

    def get_liquidity_settings(self, offering_id: str) -> LiquidityProgramSettings:
        """Return the offering's settings. Raises NotFoundError if none."""
        ...

    def save_liquidity_settings(self, settings: LiquidityProgramSettings) -> None:
        ...


@runtime_checkable
class EntityStore(Protocol):
    """Persistence collaborator. Saving an entity again replaces it."""

    def save(self, entity: Entity) -> None:
        ...

    def load_all(self) -> Iterator[Entity]:
        ...


@runtime_checkable
class OwnershipTransfer(Protocol):
    """Moves tokens and cash for a completed secondary purchase."""

    def transfer(self, settlement: PurchaseSettlement) -> None:
        ...


class InMemoryComplianceProvider:
    """Compliance states held in a dict.

    Investors with no recorded state are reported as not started on both
    KYC and accreditation.
    """

    def __init__(self) -> None:
        self._states: Dict[str, ComplianceState] = {}

    def set_state(self, state: ComplianceState) -> None:
        self._states[state.investor_id] = state

    def get_compliance_state(self, investor_id: str) -> ComplianceState:
        return self._states.get(investor_id, ComplianceState(investor_id=investor_id))


class InMemorySettingsStore:
    def __init__(self) -> None:
        self._settings: Dict[str, LiquidityProgramSettings] = {}

    def get_liquidity_settings(self, offering_id: str) -> LiquidityProgramSettings:
        settings = self._settings.get(offering_id)
        if settings is None:
            raise NotFoundError(f"No liquidity program settings for {offering_id}")
        return settings

    def save_liquidity_settings(self, settings: LiquidityProgramSettings) -> None:
        self._settings[settings.offering_id] = settings

    def offering_ids(self) -> List[str]:
        return sorted(self._settings)


class InMemoryEntityStore:
    """Latest snapshot of every saved entity, keyed by (kind, id)."""

    def __init__(self) -> None:
        self._entities: Dict[Tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def save(self, entity: Entity) -> None:
        key = entity_key(entity)
        with self._lock:
            self._entities[key] = entity.to_dict()

    def load_all(self) -> Iterator[Entity]:
        with self._lock:
            items = list(self._entities.items())
        for (kind, _), record in items:
            yield ENTITY_KINDS[kind].from_dict(record)

    def get(self, kind: str, entity_id: str) -> dict:
        record = self._entities.get((kind, entity_id))
        if record is None:
            raise NotFoundError(f"No stored {kind}: {entity_id}")
        return dict(record)

    @property
    def count(self) -> int:
        return len(self._entities)


class InMemoryOwnershipTransfer:
    """Records settlements instead of moving anything."""

    def __init__(self) -> None:
        self.settlements: List[PurchaseSettlement] = []

    def transfer(self, settlement: PurchaseSettlement) -> None:
        self.settlements.append(settlement)
