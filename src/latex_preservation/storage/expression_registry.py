"""
Expression Registry

Holds the latest extraction output for annotation reinjection. Two views
over one generation:

  - by_index:    sequence_index -> ExpressionRecord
  - by_position: raw notation values in sequence order

Both views live in one immutable RegistrySnapshot. A write builds a new
snapshot and swaps it in with a single assignment, so readers see either the
old generation or the new one, never a mix.
"""

from __future__ import annotations

import logging
import time
import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from ..parsers.expression_extractor import ExpressionRecord

logger = logging.getLogger(__name__)

RecordsInput = Union[Mapping[int, ExpressionRecord], Sequence[ExpressionRecord]]

_EMPTY_MAPPING: Mapping[Any, Any] = MappingProxyType({})


def _detach(by_index: Dict[int, Any]) -> Dict[int, Any]:
    """Copy dataclass records so later edits by the caller cannot reach a snapshot."""
    return {
        idx: dataclasses.replace(rec) if dataclasses.is_dataclass(rec) else rec
        for idx, rec in by_index.items()
    }


@dataclass(frozen=True)
class RegistrySnapshot:
    """One installed generation."""
    generation: int = 0
    by_index: Mapping[int, ExpressionRecord] = field(default_factory=lambda: _EMPTY_MAPPING)
    by_position: Tuple[str, ...] = ()
    installed_at: Optional[float] = None
    source_fingerprint: Optional[str] = None
    context: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_MAPPING)

    @property
    def size(self) -> int:
        return len(self.by_index)

    @property
    def position_size(self) -> int:
        return len(self.by_position)

    @property
    def consistent(self) -> bool:
        return self.size == self.position_size

    def get_by_index(self, index: Any) -> Optional[ExpressionRecord]:
        if not isinstance(index, int) or isinstance(index, bool):
            return None
        return self.by_index.get(index)

    def get_by_position(self, position: Any) -> Optional[str]:
        if not isinstance(position, int) or isinstance(position, bool):
            return None
        if 0 <= position < len(self.by_position):
            return self.by_position[position]
        return None


@dataclass
class RegistryStatus:
    """Point-in-time view used to decide whether to trust the registry."""
    initialised: bool
    size: int
    position_size: int
    consistent: bool
    generation: int
    stale: bool = False
    age_seconds: Optional[float] = None
    source_fingerprint: Optional[str] = None
    last_update: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialised": self.initialised,
            "size": self.size,
            "position_size": self.position_size,
            "consistent": self.consistent,
            "generation": self.generation,
            "stale": self.stale,
            "age_seconds": self.age_seconds,
            "source_fingerprint": self.source_fingerprint,
            "last_update": self.last_update,
        }


class ExpressionRegistry:
    """
    Process-wide store of the current expression generation.

    Use ``ExpressionRegistry.instance()`` for the shared registry and pass it
    explicitly to the components that need it; tests construct their own
    instances directly.
    """

    _instance: Optional["ExpressionRegistry"] = None

    def __init__(
        self,
        max_age_seconds: Optional[float] = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._snapshot = RegistrySnapshot()
        self._initialised = False
        self._generation_counter = 0
        self._reserved_generation = 0

    # -----------------------------------------------------------------------
    # Singleton lifecycle
    # -----------------------------------------------------------------------

    @classmethod
    def instance(cls, **kwargs: Any) -> "ExpressionRegistry":
        """Shared registry, created on first use."""
        if cls._instance is None:
            cls._instance = cls(**kwargs)
            logger.debug("Created shared expression registry")
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the shared registry; the next instance() call builds a new one."""
        cls._instance = None

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def begin_generation(self) -> int:
        """
        Reserve the generation number for an extraction that is starting.

        Until that generation is installed, the current one reports stale.
        """
        self._generation_counter += 1
        self._reserved_generation = self._generation_counter
        logger.debug("Reserved registry generation %d", self._reserved_generation)
        return self._reserved_generation

    def replace(
        self,
        records: RecordsInput,
        position_sequence: Sequence[str],
        *,
        source_fingerprint: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Install a new generation; both views change together or not at all.

        Returns False (previous generation kept) when the views disagree,
        index keys are not 0..n-1, or the generation was superseded.
        """
        if records is None or position_sequence is None:
            logger.warning("Invalid parameters provided for registry storage")
            return False

        if isinstance(records, Mapping):
            by_index = dict(records)
        else:
            by_index = dict(enumerate(records))
        positions = tuple(position_sequence)

        if len(by_index) != len(positions):
            logger.warning(
                "Registry replace rejected: %d records vs %d positions",
                len(by_index), len(positions)
            )
            return False
        if set(by_index) != set(range(len(positions))):
            logger.warning("Registry replace rejected: index keys are not dense 0..n-1")
            return False
        for idx, value in enumerate(positions):
            record = by_index[idx]
            if getattr(record, "raw_notation", value) != value:
                logger.warning(
                    "Registry replace rejected: index %d does not match its position entry", idx
                )
                return False

        target = self._resolve_generation(generation)
        if target is None:
            return False

        self._snapshot = RegistrySnapshot(
            generation=target,
            by_index=MappingProxyType(_detach(by_index)),
            by_position=positions,
            installed_at=self._clock(),
            source_fingerprint=source_fingerprint,
            context=MappingProxyType(dict(context or {})),
        )
        self._initialised = True

        logger.info("Stored %d expressions in registry (generation %d)", len(positions), target)
        return True

    def _resolve_generation(self, requested: Optional[int]) -> Optional[int]:
        current = self._snapshot.generation
        if requested is None:
            if self._reserved_generation > current:
                return self._reserved_generation
            self._generation_counter += 1
            return self._generation_counter
        if requested <= current:
            logger.warning(
                "Registry replace rejected: generation %d superseded by %d",
                requested, current
            )
            return None
        self._generation_counter = max(self._generation_counter, requested)
        return requested

    def clear(self) -> bool:
        """Install an empty generation. Annotation reinjection will fall back."""
        cleared = self._snapshot.size
        self._generation_counter += 1
        self._snapshot = RegistrySnapshot(
            generation=self._generation_counter,
            installed_at=self._clock(),
        )
        logger.warning("Cleared %d expressions from registry", cleared)
        return True

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def get_by_index(self, index: Any) -> Optional[ExpressionRecord]:
        return self._snapshot.get_by_index(index)

    def get_by_position(self, position: Any) -> Optional[str]:
        return self._snapshot.get_by_position(position)

    def context(self) -> Mapping[str, Any]:
        return self._snapshot.context

    def status(self) -> RegistryStatus:
        snap = self._snapshot
        age = None
        last_update = None
        if snap.installed_at is not None:
            age = max(0.0, self._clock() - snap.installed_at)
            last_update = datetime.fromtimestamp(snap.installed_at).isoformat()
        superseded = self._reserved_generation > snap.generation
        expired = (
            age is not None
            and self.max_age_seconds is not None
            and age > self.max_age_seconds
        )
        return RegistryStatus(
            initialised=self._initialised,
            size=snap.size,
            position_size=snap.position_size,
            consistent=snap.consistent,
            generation=snap.generation,
            stale=superseded or expired,
            age_seconds=age,
            source_fingerprint=snap.source_fingerprint,
            last_update=last_update,
        )
