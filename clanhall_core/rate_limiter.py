"""Pacing for remote mutations issued during provisioning and restore."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from .config import ProvisioningSettings


@dataclass(frozen=True)
class PacingSettings:
    """Fixed delays applied after each kind of mutation."""

    create_delay: float
    overwrite_delay: float

    @classmethod
    def from_config(cls, settings: ProvisioningSettings) -> "PacingSettings":
        return cls(
            create_delay=settings.mutation_delay_seconds,
            overwrite_delay=settings.overwrite_delay_seconds,
        )


class MutationPacer:
    """Sleeps a fixed delay after every remote mutation.

    One pacer belongs to a single sequential flow; it never runs calls
    concurrently, it only spaces them out to stay inside the shared budget.
    """

    __slots__ = ("settings", "mutations")

    def __init__(self, settings: PacingSettings) -> None:
        self.settings = settings
        self.mutations = 0

    async def after_create(self) -> None:
        self.mutations += 1
        await asyncio.sleep(self.settings.create_delay)

    async def after_overwrite(self) -> None:
        self.mutations += 1
        await asyncio.sleep(self.settings.overwrite_delay)


def immediate_pacer() -> MutationPacer:
    """Pacer with zero delays, for dry runs and tests."""
    return MutationPacer(PacingSettings(create_delay=0.0, overwrite_delay=0.0))
