"""Process-wide provisioning context and programmatic entry points."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import Config, ProvisioningSettings
from .database import Database
from .errors import EntityError, UnknownPolicyError
from .logger import get_audit_logger, get_logger
from .permissions import CUSTOM_POLICY, POLICIES, PermissionResult, apply
from .platform import PlatformClient
from .rate_limiter import MutationPacer, PacingSettings
from .reconciler import ReconcileResult, reconcile_roles, reconcile_structure, resolve_role_ids
from .restore import RestoreEngine, RestoreResult
from .snapshots import Snapshot, SnapshotInfo, SnapshotStore, capture_snapshot
from .templates import CLAN_POSITION_ROLES, SPECIAL_ROLES, WAR_ROLES, get_template, roles_for_sets
from .wizard import SessionRegistry, WizardOrchestrator

logger = get_logger()
audit_logger = get_audit_logger()


@dataclass
class TemplateResult:
    """Combined outcome of ``ProvisioningContext.apply_template``."""
    structure: ReconcileResult
    roles: Optional[ReconcileResult] = None
    permissions: Optional[PermissionResult] = None

    @property
    def errors(self) -> list[EntityError]:
        errors = list(self.structure.errors)
        if self.roles is not None:
            errors.extend(self.roles.errors)
        if self.permissions is not None:
            errors.extend(self.permissions.errors)
        return errors


@dataclass
class ProvisioningContext:
    """Shared state created at startup and passed to cogs by reference."""
    settings: ProvisioningSettings
    registry: SessionRegistry
    snapshot_store: SnapshotStore
    clan_store: Optional[Database] = None
    wizard: WizardOrchestrator = field(init=False)

    def __post_init__(self) -> None:
        self.wizard = WizardOrchestrator(
            self.registry,
            self.pacing,
            clan_store=self.clan_store,
            summary_error_limit=self.settings.summary_error_limit,
        )

    @classmethod
    def from_config(cls, config: Config, clan_store: Optional[Database] = None) -> "ProvisioningContext":
        return cls(
            settings=config.provisioning,
            registry=SessionRegistry(
                timeout_minutes=config.setup_settings.session_timeout_minutes,
                retention_minutes=config.setup_settings.completed_retention_minutes,
            ),
            snapshot_store=SnapshotStore(
                config.snapshot_settings.directory,
                max_per_guild=config.snapshot_settings.max_per_guild,
            ),
            clan_store=clan_store,
        )

    @property
    def pacing(self) -> PacingSettings:
        return PacingSettings.from_config(self.settings)

    def new_pacer(self) -> MutationPacer:
        return MutationPacer(self.pacing)

    async def apply_template(
        self,
        platform: PlatformClient,
        template_key: str,
        role_sets: Iterable[str] = (),
        policy: Optional[str] = None,
    ) -> TemplateResult:
        """Reconcile a template outside the wizard.

        Unknown template, role set or policy keys raise before any remote call.
        """
        template = get_template(template_key)
        role_specs = roles_for_sets(role_sets)
        if policy is not None and policy != CUSTOM_POLICY and policy not in POLICIES:
            raise UnknownPolicyError(policy, (*POLICIES, CUSTOM_POLICY))

        pacer = self.new_pacer()
        audit_logger.info(f"Applying template '{template_key}' to guild {platform.workspace_id}")
        result = TemplateResult(structure=await reconcile_structure(template, platform, pacer))
        if role_specs:
            result.roles = await reconcile_roles(role_specs, platform, pacer)

        if policy is not None:
            subjects = await resolve_role_ids((*CLAN_POSITION_ROLES, *WAR_ROLES, *SPECIAL_ROLES), platform)
            if result.roles is not None:
                subjects.update(result.roles.ids)
            channel_ids = set(result.structure.ids.values())
            live = [*await platform.list_categories(), *await platform.list_channels()]
            result.permissions = await apply(
                policy, [c for c in live if c.id in channel_ids], subjects, platform, pacer
            )

        logger.info(
            f"Template '{template_key}' applied to guild {platform.workspace_id}: "
            f"{result.structure.created_count} created, {result.structure.skipped_count} skipped, "
            f"{len(result.errors)} errors"
        )
        return result

    async def create_snapshot(self, platform: PlatformClient) -> Snapshot:
        snapshot = await capture_snapshot(platform)
        await self.snapshot_store.put(snapshot)
        audit_logger.info(f"Snapshot {snapshot.snapshot_id} created for guild {platform.workspace_id}")
        return snapshot

    async def restore_snapshot(self, platform: PlatformClient, snapshot_id: str) -> RestoreResult:
        """Restore a stored snapshot into the guild it was taken from."""
        snapshot = await self.snapshot_store.get(platform.workspace_id, snapshot_id)
        engine = RestoreEngine(platform, self.new_pacer())
        result = await engine.restore(platform.workspace_id, snapshot)
        audit_logger.info(
            f"Snapshot {snapshot_id} restored into guild {platform.workspace_id}: "
            f"{result.roles_restored} roles, {result.channels_restored} channels, "
            f"{len(result.errors)} errors"
        )
        return result

    async def list_snapshots(self, workspace_id: int) -> list[SnapshotInfo]:
        return await self.snapshot_store.list(workspace_id)
