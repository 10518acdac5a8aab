# Copyright 2025 Ralph Lemke
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Entry points that open clear flows.

Entry points are thin adapters: they hold a target and know how to open
a flow for it, either their own flow or a stable page-level flow owned by
a :class:`FlowHost`. Each entry point decides for itself whether the
keyboard shortcut may trigger it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Union

from .entities import ClearTarget, GroupTarget
from .errors import InvalidSelectionError
from .flow import ClearGroupFlow, ClearTaskInstanceFlow, DialogFlowController

logger = logging.getLogger(__name__)

CLEAR_HOTKEY = "shift+c"

AnyTarget = Union[ClearTarget, GroupTarget]
OpenDelegate = Callable[[AnyTarget], None]


def normalize_hotkey(key: str) -> str:
    """Normalize a key combination for comparison.

    >>> normalize_hotkey("Shift + C")
    'shift+c'
    """
    return "+".join(part.strip().lower() for part in key.split("+"))


class ClearEntryPoint:
    """A button or icon button that opens a clear flow.

    Args:
        target: The task instance or task group to clear
        flow: The flow this entry opens itself; ignored when *on_open* is given
        on_open: Page-level delegate that opens a shared flow for the target
        hotkey_enabled: Whether the clear shortcut triggers this entry
        hotkey: The shortcut this entry responds to; defaults to the flow's
            configured hotkey
    """

    def __init__(
        self,
        target: AnyTarget,
        flow: DialogFlowController | None = None,
        on_open: OpenDelegate | None = None,
        hotkey_enabled: bool = False,
        hotkey: str | None = None,
    ) -> None:
        if flow is None and on_open is None:
            raise ValueError("An entry point needs a flow or an on_open delegate")
        self.target = target
        self.flow = flow
        self.on_open = on_open
        self.hotkey_enabled = hotkey_enabled
        if hotkey is None:
            hotkey = flow.config.hotkey if flow is not None else CLEAR_HOTKEY
        self.hotkey = normalize_hotkey(hotkey)

    @property
    def is_group(self) -> bool:
        return isinstance(self.target, GroupTarget)

    @property
    def is_all_mapped(self) -> bool:
        return isinstance(self.flow, ClearTaskInstanceFlow) and self.flow.all_mapped

    def click(self) -> bool:
        """Open the flow for this entry's target.

        Returns:
            True if a flow was opened, False if the target has no usable
            identity and the entry refused to open
        """
        missing = self.target.missing_fields()
        if missing:
            logger.warning("Refusing to open clear flow, missing %s", ", ".join(missing))
            return False

        if self.on_open is not None:
            self.on_open(self.target)
            return True

        if self.flow.is_open:
            logger.debug("Clear flow already open")
            return True
        try:
            self.flow.open(self.target)
        except InvalidSelectionError as e:
            logger.warning("Refusing to open clear flow: %s", e)
            return False
        return True

    def handle_hotkey(self, key: str) -> bool:
        """Open the flow if *key* is this entry's enabled shortcut."""
        if not self.hotkey_enabled or normalize_hotkey(key) != self.hotkey:
            return False
        return self.click()


class HotkeyRegistry:
    """Routes key presses to the entry points mounted on one page.

    Only entries that opted into the shortcut respond, so several entries
    can share a page without all firing on the same key.
    """

    def __init__(self) -> None:
        self._entries: list[ClearEntryPoint] = []

    def bind(self, entry: ClearEntryPoint) -> None:
        if entry not in self._entries:
            self._entries.append(entry)

    def unbind(self, entry: ClearEntryPoint) -> None:
        if entry in self._entries:
            self._entries.remove(entry)

    def dispatch(self, key: str) -> list[ClearEntryPoint]:
        """Deliver a key press; returns the entries that opened a flow."""
        return [entry for entry in list(self._entries) if entry.handle_hotkey(key)]


class FlowHost:
    """Owns the stable, page-level clear flows of a page with many rows.

    Rows delegate to :meth:`open_for`, which force-closes whatever flow is
    showing and reopens the matching flow for the new target, so no state
    from a previous row leaks into the next.
    """

    def __init__(
        self,
        instance_flow: ClearTaskInstanceFlow,
        group_flow: ClearGroupFlow | None = None,
    ) -> None:
        self.instance_flow = instance_flow
        self.group_flow = group_flow

    @property
    def active_flow(self) -> DialogFlowController | None:
        for flow in (self.instance_flow, self.group_flow):
            if flow is not None and flow.is_open:
                return flow
        return None

    def open_for(self, target: AnyTarget) -> None:
        """Open the flow matching *target*, discarding any open flow."""
        active = self.active_flow
        if active is not None:
            active.close()

        if isinstance(target, GroupTarget):
            if self.group_flow is None:
                raise ValueError("No group flow configured for this page")
            self.group_flow.open(target)
        else:
            self.instance_flow.open(target)

    def close(self) -> None:
        active = self.active_flow
        if active is not None:
            active.close()

    def entry(self, target: AnyTarget, hotkey_enabled: bool = False) -> ClearEntryPoint:
        """Create an entry point that opens this host's flows."""
        return ClearEntryPoint(
            target,
            on_open=self.open_for,
            hotkey_enabled=hotkey_enabled,
            hotkey=self.instance_flow.config.hotkey,
        )
