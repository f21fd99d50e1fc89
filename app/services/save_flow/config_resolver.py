"""
Flow Configuration Resolver

Resolves a tenant's save-flow configuration, synthesizing the system
default when the tenant has never stored one. All merging of partial
updates happens here.
"""

import logging
from typing import Any

from app.exceptions import InvalidStageError
from app.schemas.save_flow import (
    STAGE_FIELDS,
    STAGE_NAMES,
    SaveFlowConfiguration,
    SaveFlowConfigurationPatch,
    StageConfig,
    StageView,
)
from app.services.save_flow.interfaces import ConfigurationStore, UnitOfWork

logger = logging.getLogger(__name__)


def default_configuration(tenant_id: str) -> SaveFlowConfiguration:
    """All seven stages enabled with baseline branch and offer parameters."""
    return SaveFlowConfiguration(tenant_id=tenant_id)


def get_stage(config: SaveFlowConfiguration, stage: int) -> StageConfig:
    if stage not in STAGE_FIELDS:
        raise InvalidStageError(stage)
    field, _ = STAGE_FIELDS[stage]
    return getattr(config, field)


def stage_view(config: SaveFlowConfiguration, stage: int) -> StageView:
    """Stage payload plus its number and name."""
    stage_config = get_stage(config, stage)
    return StageView(
        stage=stage,
        stage_name=STAGE_NAMES[stage],
        enabled=stage_config.enabled,
        config=stage_config.model_dump(mode="json"),
    )


class ConfigurationResolver:
    """
    Loads and updates per-tenant save-flow configuration.

    An unknown tenant is not an error: absence maps to the default.
    """

    def __init__(self, store: ConfigurationStore, uow: UnitOfWork):
        self.store = store
        self.uow = uow

    async def resolve(self, tenant_id: str) -> SaveFlowConfiguration:
        config = await self.store.get(tenant_id)
        if config is None:
            return default_configuration(tenant_id)
        return config

    async def update(self, tenant_id: str, patch: SaveFlowConfigurationPatch) -> SaveFlowConfiguration:
        """
        Merge a partial update per top-level key.

        Stage sub-objects in the patch replace the stored stage wholesale.
        """
        current = await self.resolve(tenant_id)
        changes = patch.model_dump(exclude_unset=True, exclude_none=True)
        merged = current.model_copy(
            update={key: getattr(patch, key) for key in changes}
        )

        async with self.uow.transaction():
            saved = await self.store.upsert(tenant_id, self._to_fields(merged))

        logger.info(f"Updated save flow config for tenant {tenant_id}: {sorted(changes)}")
        return saved

    async def update_stage(self, tenant_id: str, stage: int, fields: dict[str, Any]) -> SaveFlowConfiguration:
        """
        Change individual fields of one stage.

        The stored stage is re-read and merged with ``fields`` so sibling
        fields of that stage are kept.
        """
        current = await self.resolve(tenant_id)
        existing = get_stage(current, stage)
        field, model = STAGE_FIELDS[stage]

        merged_stage = model.model_validate({**existing.model_dump(), **fields})
        merged = current.model_copy(update={field: merged_stage})

        async with self.uow.transaction():
            saved = await self.store.upsert(tenant_id, self._to_fields(merged))

        logger.info(f"Updated stage {stage} ({field}) for tenant {tenant_id}: {sorted(fields)}")
        return saved

    @staticmethod
    def _to_fields(config: SaveFlowConfiguration) -> dict[str, Any]:
        return config.model_dump(mode="json", exclude={"id", "tenant_id"})
