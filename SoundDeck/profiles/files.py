"""Hotkey (.mrv) and holding tank (.hld) file formats.

A hotkey file holds one tab::

    f1::42
    f2::
    ...
    f12::7
    tab_name::Friday_Night

Spaces in the tab name are stored as underscores. A holding tank file holds one
track reference per line.
"""
import logging
import pathlib
from typing import Dict, List, Optional, Tuple, Union

from .state import HOTKEY_SLOTS, HoldingTankTab, HotkeyTab

HOTKEY_FILE_SUFFIX: str = '.mrv'
HOLDING_TANK_FILE_SUFFIX: str = '.hld'
TAB_NAME_KEY: str = 'tab_name'
SEPARATOR: str = '::'


def read_hotkey_file(path: Union[str, pathlib.Path]) -> Tuple[Dict[str, str], Optional[str]]:
    """Read a hotkey file.

    Args:
        path: Path to the .mrv file.

    Returns:
        tuple: Slot to track reference mapping in slot order, and the tab title or None.

    Raises:
        OSError: If the file cannot be read.
    """
    path = pathlib.Path(path)
    slots: Dict[str, str] = {}
    title: Optional[str] = None

    for line in path.read_text(encoding='utf-8').splitlines():
        line = line.strip()
        if not line:
            continue
        if SEPARATOR not in line:
            logging.warning(f'{path.name}: skipping malformed line "{line}"')
            continue
        key, value = line.split(SEPARATOR, 1)
        key = key.strip().lower()
        value = value.strip()
        if key == TAB_NAME_KEY:
            title = value.replace('_', ' ').strip() or None
        elif key in HOTKEY_SLOTS:
            if value:
                slots[key] = value
        else:
            logging.warning(f'{path.name}: skipping unknown key "{key}"')

    return {k: slots[k] for k in HOTKEY_SLOTS if k in slots}, title


def write_hotkey_file(path: Union[str, pathlib.Path], tab: HotkeyTab) -> None:
    """Write all twelve slots of ``tab`` followed by its title."""
    lines = [f'{slot}{SEPARATOR}{tab.slots.get(slot, "")}' for slot in HOTKEY_SLOTS]
    if tab.title and tab.title.strip():
        lines.append(f'{TAB_NAME_KEY}{SEPARATOR}{tab.title.replace(" ", "_")}')
    pathlib.Path(path).write_text('\n'.join(lines) + '\n', encoding='utf-8')
    logging.debug(f'Wrote hotkey file {path}')


def read_holding_tank_file(path: Union[str, pathlib.Path]) -> List[str]:
    """Read a holding tank file. Blank lines are ignored and order is kept."""
    text = pathlib.Path(path).read_text(encoding='utf-8')
    return [line.strip() for line in text.splitlines() if line.strip()]


def write_holding_tank_file(path: Union[str, pathlib.Path], tab: HoldingTankTab) -> None:
    text = ''.join(f'{track}\n' for track in tab.tracks)
    pathlib.Path(path).write_text(text, encoding='utf-8')
    logging.debug(f'Wrote holding tank file {path}')
