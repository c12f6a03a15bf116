from __future__ import annotations

import logging
from typing import AbstractSet, Iterable, List, Optional, Tuple, Union

from .errors import NoEligibleModel
from .models import Modality, ModelDescriptor

logger = logging.getLogger(__name__)


def _as_modality(value: Union[Modality, str]) -> Modality:
    return value if isinstance(value, Modality) else Modality(str(value).lower())


class ModelResolver:
    """
    Picks one concrete model for a set of required tasks.

    Order of preference:
    1. an explicit model id, if it exists, is active, matches the modality and
       supports at least one required task;
    2. active models of the modality whose tasks cover every required task;
    3. (relaxed) active models of the modality sharing at least one task.
    Candidates rank by is_default, then priority (highest first), then
    registry order. When a pinned model cannot serve, candidates from its
    family_tag rank ahead of the rest.
    """

    def __init__(self, registry: Iterable[ModelDescriptor]):
        self._registry: Tuple[ModelDescriptor, ...] = tuple(registry)

    @property
    def registry(self) -> Tuple[ModelDescriptor, ...]:
        return self._registry

    def get(self, model_id: str) -> Optional[ModelDescriptor]:
        for model in self._registry:
            if model.id == model_id and model.is_active:
                return model
        return None

    def list_models(self, modality: Union[Modality, str, None] = None) -> List[ModelDescriptor]:
        wanted = _as_modality(modality) if modality is not None else None
        models = [m for m in self._registry if m.is_active and (wanted is None or m.modality == wanted)]
        return self._rank(models)

    def resolve(
        self,
        required_tasks: AbstractSet[str],
        modality: Union[Modality, str],
        explicit_model_id: Optional[str] = None,
    ) -> ModelDescriptor:
        required = frozenset(required_tasks)
        modality = _as_modality(modality)

        family = None
        if explicit_model_id:
            pinned = self.get(explicit_model_id)
            if pinned is not None and pinned.modality == modality and (not required or pinned.tasks & required):
                logger.info(f"Using pinned model {pinned.id}")
                return pinned
            logger.info(
                f"Pinned model {explicit_model_id} is unknown or cannot serve {sorted(required)} ({modality.value}); "
                f"falling back to capability match"
            )
            family = self._family_of(explicit_model_id)

        pool = [m for m in self._registry if m.is_active and m.modality == modality]
        strict = [m for m in pool if required <= m.tasks]
        if strict:
            chosen = self._rank(strict, family)[0]
            logger.info(f"Resolved {sorted(required)} -> {chosen.id} (strict)")
            return chosen

        relaxed = [m for m in pool if m.tasks & required]
        if relaxed:
            chosen = self._rank(relaxed, family)[0]
            logger.info(f"Resolved {sorted(required)} -> {chosen.id} (relaxed)")
            return chosen

        raise NoEligibleModel(required, modality)

    def _family_of(self, model_id: str) -> Optional[str]:
        # Inactive models still name their family.
        return next((m.family_tag for m in self._registry if m.id == model_id), None)

    def _rank(self, models: List[ModelDescriptor], family: Optional[str] = None) -> List[ModelDescriptor]:
        order = {id(m): idx for idx, m in enumerate(self._registry)}
        return sorted(
            models,
            key=lambda m: (family is not None and m.family_tag != family, not m.is_default, -m.priority, order[id(m)]),
        )
