"""Live hotkey and holding tank state.

The persistence layer reads and replaces the live state only through the two
accessor protocols below. :class:`HotkeyTabs` and :class:`HoldingTankTabs` are
in-memory implementations used headless and by the tests. Their per-item
helpers only mutate memory; callers request saves through the save coordinator.
"""
import copy
import logging
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from ..profiles.state import (
    HOTKEY_SLOTS,
    TAB_COUNT,
    HoldingTankTab,
    HotkeyTab,
    empty_holding_tank_tabs,
    empty_hotkey_tabs,
)


@runtime_checkable
class HotkeyAccessor(Protocol):
    def get_hotkey_data(self) -> List[HotkeyTab]: ...

    def set_hotkey_data(self, tabs: List[HotkeyTab]) -> None: ...


@runtime_checkable
class HoldingTankAccessor(Protocol):
    def get_holding_tank_data(self) -> List[HoldingTankTab]: ...

    def set_holding_tank_data(self, tabs: List[HoldingTankTab]) -> None: ...


def _check_tab(tab_number: int) -> None:
    if not 1 <= tab_number <= TAB_COUNT:
        raise ValueError(f'Tab number must be between 1 and {TAB_COUNT}, got {tab_number}.')


class HotkeyTabs:
    """In-memory hotkey tabs."""

    def __init__(self) -> None:
        self._tabs: List[HotkeyTab] = empty_hotkey_tabs()

    def get_hotkey_data(self) -> List[HotkeyTab]:
        return copy.deepcopy(self._tabs)

    def set_hotkey_data(self, tabs: List[HotkeyTab]) -> None:
        new_tabs = empty_hotkey_tabs()
        for tab in tabs:
            if 1 <= tab.tab_number <= TAB_COUNT:
                new_tabs[tab.tab_number - 1] = copy.deepcopy(tab)
        self._tabs = new_tabs
        logging.debug('Hotkey tabs replaced')

    def tab(self, tab_number: int) -> HotkeyTab:
        _check_tab(tab_number)
        return self._tabs[tab_number - 1]

    def assign(self, tab_number: int, slot: str, track: Optional[str]) -> None:
        """Assign ``track`` to ``slot``. An empty track clears the slot."""
        slot = slot.lower()
        if slot not in HOTKEY_SLOTS:
            raise ValueError(f'Unknown hotkey slot: {slot}')
        tab = self.tab(tab_number)
        if track:
            tab.slots[slot] = str(track)
        else:
            tab.slots.pop(slot, None)
        tab.slots = {k: tab.slots[k] for k in HOTKEY_SLOTS if k in tab.slots}

    def clear_slot(self, tab_number: int, slot: str) -> None:
        self.assign(tab_number, slot, None)

    def set_title(self, tab_number: int, title: Optional[str]) -> None:
        self.tab(tab_number).title = title or None


class HoldingTankTabs:
    """In-memory holding tank tabs."""

    def __init__(self) -> None:
        self._tabs: List[HoldingTankTab] = empty_holding_tank_tabs()

    def get_holding_tank_data(self) -> List[HoldingTankTab]:
        return copy.deepcopy(self._tabs)

    def set_holding_tank_data(self, tabs: List[HoldingTankTab]) -> None:
        new_tabs = empty_holding_tank_tabs()
        for tab in tabs:
            if 1 <= tab.tab_number <= TAB_COUNT:
                new_tabs[tab.tab_number - 1] = copy.deepcopy(tab)
        self._tabs = new_tabs
        logging.debug('Holding tank tabs replaced')

    def tab(self, tab_number: int) -> HoldingTankTab:
        _check_tab(tab_number)
        return self._tabs[tab_number - 1]

    def add(self, tab_number: int, track: str) -> None:
        self.tab(tab_number).tracks.append(str(track))

    def remove(self, tab_number: int, index: int) -> str:
        return self.tab(tab_number).tracks.pop(index)

    def clear(self, tab_number: int) -> None:
        self.tab(tab_number).tracks.clear()

    def set_tracks(self, tab_number: int, tracks: Iterable[str]) -> None:
        self.tab(tab_number).tracks = [str(t) for t in tracks]

    def set_title(self, tab_number: int, title: Optional[str]) -> None:
        self.tab(tab_number).title = title or None
