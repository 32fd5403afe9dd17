"""Read-only registry of configured entities and their hardware bindings."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence
from types import MappingProxyType

from jema2mqtt._errors import HardwareUnavailableError
from jema2mqtt._hardware import HardwarePort, JemaBinding
from jema2mqtt._models import Entity

logger = logging.getLogger(__name__)


class EntityRegistry:
    """Maps entity ids to entities and their exclusively owned bindings.

    Built once by :meth:`acquire`; never mutated afterwards.
    """

    def __init__(
        self,
        entities: Sequence[Entity],
        bindings: Mapping[str, JemaBinding],
    ) -> None:
        self._entities: Mapping[str, Entity] = MappingProxyType(
            {entity.id: entity for entity in entities},
        )
        self._bindings: Mapping[str, JemaBinding] = MappingProxyType(dict(bindings))

    @classmethod
    async def acquire(
        cls,
        entities: Sequence[Entity],
        hardware: HardwarePort,
    ) -> EntityRegistry:
        """Acquire one binding per entity, concurrently.

        Partial hardware is not a running mode: if any acquisition
        fails, the bindings that did succeed are released and the
        first failure is raised.

        Raises:
            HardwareUnavailableError: If any binding cannot be acquired.
        """
        results = await asyncio.gather(
            *(
                hardware.acquire(entity.control_handle, entity.monitor_handle)
                for entity in entities
            ),
            return_exceptions=True,
        )

        bindings: dict[str, JemaBinding] = {}
        failure: HardwareUnavailableError | None = None
        for entity, result in zip(entities, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Cannot acquire hardware for '%s': %s",
                    entity.id,
                    result,
                    extra={"entity": entity.id},
                )
                if failure is None:
                    failure = HardwareUnavailableError(entity.id, str(result))
                    failure.__cause__ = result
            else:
                bindings[entity.id] = result

        registry = cls(entities, bindings)
        if failure is not None:
            await registry.release_all()
            raise failure

        logger.info("Acquired hardware for %d entity(ies)", len(bindings))
        return registry

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def get(self, entity_id: str) -> Entity | None:
        return self._entities.get(entity_id)

    def binding(self, entity_id: str) -> JemaBinding:
        """Return the binding owned by *entity_id*.

        Raises:
            KeyError: If the entity is unknown.
        """
        return self._bindings[entity_id]

    async def release_all(self) -> None:
        """Release every binding; one failure does not stop the others."""
        results = await asyncio.gather(
            *(binding.release() for binding in self._bindings.values()),
            return_exceptions=True,
        )
        for entity_id, result in zip(self._bindings, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Failed to release hardware for '%s': %s",
                    entity_id,
                    result,
                    extra={"entity": entity_id},
                )
