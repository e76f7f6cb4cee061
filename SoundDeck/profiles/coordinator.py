"""Restoration lock and save coordination.

Every save of the live hotkey and holding tank state goes through
:meth:`SaveCoordinator.request_save`. While a profile's state is being loaded
into the accessors the :class:`RestorationLock` is engaged and save requests
are suppressed, so the half-populated state is never written back.

The gate check and the accessor read in :meth:`SaveCoordinator.request_save`
happen synchronously, before control returns to the event loop.
"""
import asyncio
import contextlib
import enum
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from .paths import Profile
from .state import DOMAINS, HOTKEYS, StateSnapshot, StateStore
from ..settings import lib
from ..status import status
from ..ui.accessors import HoldingTankAccessor, HotkeyAccessor
from ..ui.actions import signals


class LockState(enum.Enum):
    Normal = enum.auto()
    Restoring = enum.auto()


class RestorationLock:
    """Gate that is engaged for the whole duration of a load-and-populate.

    Nested engagements keep the lock engaged until the outermost one is
    released.
    """

    def __init__(self) -> None:
        self._depth: int = 0

    def __repr__(self) -> str:
        return f'<RestorationLock {self.state.name} depth={self._depth}>'

    @property
    def state(self) -> LockState:
        return LockState.Restoring if self._depth else LockState.Normal

    @property
    def is_restoring(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        self._depth += 1
        if self._depth == 1:
            logging.debug('Restoration started, saves are suppressed')
            signals.restorationStarted.emit()

    def release(self) -> None:
        if self._depth == 0:
            raise RuntimeError('RestorationLock released more times than acquired')
        self._depth -= 1
        if self._depth == 0:
            logging.debug('Restoration finished, saves are enabled')
            signals.restorationFinished.emit()

    @contextlib.contextmanager
    def restoring(self):
        """Engage the lock for the duration of the ``with`` block.

        Use it inside a coroutine before its first ``await`` so no save can
        slip in between scheduling and engagement.
        """
        self.acquire()
        try:
            yield self
        finally:
            self.release()


class SaveCoordinator:
    """Funnels save requests for the live state into :class:`StateStore`.

    Args:
        store: State file I/O.
        lock: The restoration lock shared with every load path.
        hotkeys: Live hotkey accessor.
        holding_tank: Live holding tank accessor.
        active_profile: Callable returning the active profile, or None.
    """

    def __init__(
            self,
            store: StateStore,
            lock: RestorationLock,
            hotkeys: HotkeyAccessor,
            holding_tank: HoldingTankAccessor,
            active_profile: Callable[[], Optional[Profile]],
    ) -> None:
        self.store = store
        self.lock = lock
        self.hotkeys = hotkeys
        self.holding_tank = holding_tank
        self._active_profile = active_profile

        self._last_known: Optional[StateSnapshot] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._scheduled: Dict[str, asyncio.TimerHandle] = {}

    @property
    def last_known(self) -> Optional[StateSnapshot]:
        return self._last_known

    def reset(self) -> None:
        """Forget the last-known snapshot and cancel scheduled saves."""
        self.cancel_scheduled()
        self._last_known = None

    @staticmethod
    def _resolved(result: status.Result) -> 'asyncio.Future[status.Result]':
        future = asyncio.get_running_loop().create_future()
        future.set_result(result)
        return future

    def _capture(self, domain: Optional[str] = None) -> StateSnapshot:
        base = self._last_known
        if domain is None or base is None:
            return StateSnapshot(
                hotkeys=self.hotkeys.get_hotkey_data(),
                holding_tank=self.holding_tank.get_holding_tank_data(),
            )
        if domain == HOTKEYS:
            return base.replace(hotkeys=self.hotkeys.get_hotkey_data())
        return base.replace(holding_tank=self.holding_tank.get_holding_tank_data())

    def _track(self, task: asyncio.Task) -> None:
        self._in_flight.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        ex = task.exception()
        if ex is not None:
            logging.error(f'Save task failed: {ex}')

    def _suppress(self, domain: str) -> status.Result:
        logging.debug(f'Save of "{domain}" suppressed during restoration')
        signals.saveSuppressed.emit(domain)
        return status.Result.suppressed()

    def _start_save(self, domain: Optional[str]) -> Awaitable[status.Result]:
        profile = self._active_profile()
        if profile is None:
            logging.warning('Save requested without an active profile')
            return self._resolved(status.Result.failure(status.Status.ProfileNotFound, 'No active profile.'))

        snapshot = self._capture(domain)
        self._last_known = snapshot
        task = asyncio.ensure_future(self.store.save(profile, snapshot))
        self._track(task)
        return task

    def request_save(self, domain: str) -> Awaitable[status.Result]:
        """Request a save of ``domain`` for the active profile.

        Synchronous: the restoration gate is checked and the live state is
        read before returning. The returned awaitable resolves to the save's
        :class:`status.Result`. It need not be awaited.

        Args:
            domain: ``'hotkeys'`` or ``'holdingTank'``.
        """
        if domain not in DOMAINS:
            raise ValueError(f'Unknown state domain: {domain}')
        if self.lock.is_restoring:
            return self._resolved(self._suppress(domain))
        return self._start_save(domain)

    def request_save_later(self, domain: str, delay: float = lib.SAVE_DEBOUNCE) -> None:
        """Debounced :meth:`request_save`.

        Calls within ``delay`` seconds of each other collapse into one save.
        The restoration gate is checked when the save fires.
        """
        if domain not in DOMAINS:
            raise ValueError(f'Unknown state domain: {domain}')
        handle = self._scheduled.pop(domain, None)
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._scheduled[domain] = loop.call_later(delay, self._fire, domain)

    def _fire(self, domain: str) -> None:
        self._scheduled.pop(domain, None)
        self.request_save(domain)

    def cancel_scheduled(self) -> None:
        for handle in self._scheduled.values():
            handle.cancel()
        self._scheduled.clear()

    @property
    def has_scheduled(self) -> bool:
        return bool(self._scheduled)

    async def drain(self) -> None:
        """Wait until every save started before this call has completed.

        Saves started while waiting are not included.
        """
        pending = list(self._in_flight)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def save_profile_state(self) -> status.Result:
        """Persist both domains of the live state for the active profile.

        Suppressed while the restoration lock is engaged.
        """
        if self.lock.is_restoring:
            return self._suppress('all')
        self.cancel_scheduled()
        return await self._start_save(None)

    async def flush(self) -> status.Result:
        """Save the live state and wait for every outstanding write."""
        result = await self.save_profile_state()
        await self.drain()
        return result

    def apply_snapshot(self, snapshot: StateSnapshot) -> None:
        """Populate the live accessors from ``snapshot``.

        Must be called with the restoration lock engaged.
        """
        if not self.lock.is_restoring:
            raise RuntimeError('apply_snapshot requires the restoration lock')
        self.hotkeys.set_hotkey_data(snapshot.hotkeys)
        self.holding_tank.set_holding_tank_data(snapshot.holding_tank)
        self._last_known = snapshot

    async def load_profile_state(self, save_after: bool = False) -> status.Result:
        """Load the active profile's state into the live accessors.

        The restoration lock is engaged for the whole load-and-populate and
        released on every exit path. Saves already in flight complete before
        the file is read.

        Args:
            save_after: Issue one save after the lock is released.

        Returns:
            status.Result: Failed with ``StateLoadFailed`` when the accessors
            reject the loaded state.
        """
        profile = self._active_profile()
        if profile is None:
            return status.Result.failure(status.Status.ProfileNotFound, 'No active profile.')

        try:
            with self.lock.restoring():
                self.cancel_scheduled()
                await self.drain()
                snapshot = await self.store.load(profile)
                self.apply_snapshot(snapshot)
        except Exception as ex:
            msg = f'{status.get_message(status.Status.StateLoadFailed)} Profile "{profile.name}": {ex}'
            logging.error(msg)
            return status.Result.failure(status.Status.StateLoadFailed, msg)

        logging.debug(f'Restored state for "{profile.name}"')
        signals.stateLoaded.emit(profile.name)

        if save_after:
            await self.save_profile_state()

        return status.Result.success(
            profile=profile.name,
            hotkeys=[t.to_dict() for t in snapshot.hotkeys],
            holdingTank=[t.to_dict() for t in snapshot.holding_tank],
        )
