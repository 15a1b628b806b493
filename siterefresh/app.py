"""Explicit construction of the scheduler and its collaborators."""

from __future__ import annotations

import random
from dataclasses import dataclass

from ._util import JsonlLogger
from .api_client import ServiceClient
from .banners import DEFAULT_BANNER_SPECS, BannerSpec, BannerTask, BannerUpdater
from .config import Settings
from .content import ContentGenerationTask, LanguageUpdateTask
from .control import BannerControl, SchedulerControl
from .scheduler import Scheduler
from .status_store import StatusStore
from .translation import Translator


@dataclass(frozen=True)
class App:
    settings: Settings
    scheduler: Scheduler
    control: SchedulerControl
    banners: BannerControl


def build_status_store(settings: Settings) -> StatusStore:
    return StatusStore(settings.status_file)


def build_app(
    settings: Settings,
    *,
    client: ServiceClient | None = None,
    banner_specs: tuple[BannerSpec, ...] = DEFAULT_BANNER_SPECS,
    rng: random.Random | None = None,
) -> App:
    """Wire client, executors, store and scheduler.

    Raises ``ConfigError`` when no API credential is configured and no
    client is supplied.
    """
    client = client or ServiceClient.from_settings(settings)
    updater = BannerUpdater(client, banner_dir=settings.banner_dir)
    tasks = [
        ContentGenerationTask(client, content_dir=settings.content_dir),
        BannerTask(updater, specs=banner_specs, rng=rng),
        LanguageUpdateTask(Translator(client), content_dir=settings.content_dir),
    ]
    scheduler = Scheduler(
        tasks=tasks,
        store=build_status_store(settings),
        schedule=settings.schedule,
        run_log=JsonlLogger(settings.run_log),
    )
    return App(
        settings=settings,
        scheduler=scheduler,
        control=SchedulerControl(scheduler),
        banners=BannerControl(updater, specs=banner_specs, rng=rng),
    )
