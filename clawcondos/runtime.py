"""Wires the store, spawner, scheduler and engines into one object."""

from typing import Optional

from .cascade import CascadeScheduler
from .config import ClawCondosConfig
from .events import EventBus
from .kickoff import KickoffEngine
from .scheduler import ManualScheduler, Scheduler, ThreadingScheduler
from .sessions import SessionSpawner, get_spawner
from .store import JsonStore, Store
from .supervisor import RetrySupervisor


class Runtime:
    def __init__(
        self,
        store: Store,
        spawner: SessionSpawner,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
        config: Optional[ClawCondosConfig] = None,
    ):
        self.config = config or ClawCondosConfig()
        self.store = store
        self.spawner = spawner
        self.scheduler = scheduler or ThreadingScheduler()
        self.bus = bus or EventBus()
        self.kickoff = KickoffEngine(store, spawner, self.bus)
        self.cascade = CascadeScheduler(
            store,
            self.kickoff,
            self.scheduler,
            self.bus,
            delay_seconds=self.config.cascade.delay_seconds,
            retry_backoff_seconds=self.config.cascade.retry_backoff_seconds,
        )
        self.supervisor = RetrySupervisor(store, self.bus, cascade=self.cascade)

    def drain(self) -> int:
        """Run all deferred cascade work now. Only meaningful with a ManualScheduler."""
        if isinstance(self.scheduler, ManualScheduler):
            return self.scheduler.run_all()
        return 0

    def shutdown(self):
        self.scheduler.shutdown()


def build_runtime(
    config: ClawCondosConfig,
    spawner: Optional[SessionSpawner] = None,
    scheduler: Optional[Scheduler] = None,
    store: Optional[Store] = None,
) -> Runtime:
    if spawner is None:
        spawner = get_spawner(
            config.gateway.spawner,
            url=config.gateway.url,
            timeout=config.gateway.timeout_seconds,
            token=config.gateway.token,
        )
    return Runtime(
        store=store or JsonStore(config.store.path),
        spawner=spawner,
        scheduler=scheduler,
        config=config,
    )
