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

"""Clear scope option selection."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .entities import ClearScopeOptions
from .types import ClearScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptionDescriptor:
    """One entry of the scope option control."""

    value: str
    selectable: bool = True


class OptionsState:
    """Holds the selected clear scope options for one open flow.

    Selection is multi-select and set-valued: callers pass the full
    desired set each time. Date-bound options (past, future) are only
    selectable when the owning instance has a logical date; otherwise
    they are silently filtered out of the selection.
    """

    def __init__(self, has_logical_date: bool = False) -> None:
        self._has_logical_date = has_logical_date
        self._selected: frozenset[str] = ClearScope.DEFAULT

    @property
    def has_logical_date(self) -> bool:
        return self._has_logical_date

    @property
    def selected(self) -> frozenset[str]:
        """The current effective selection."""
        return self._selected

    def is_selectable(self, option_id: str) -> bool:
        """Check if *option_id* may enter the selection."""
        if ClearScope.is_date_bound(option_id):
            return self._has_logical_date
        return ClearScope.is_known(option_id)

    def descriptors(self) -> list[OptionDescriptor]:
        """Describe every option in display order."""
        return [OptionDescriptor(value=o, selectable=self.is_selectable(o)) for o in ClearScope.ALL]

    def select(self, option_ids: Iterable[str]) -> frozenset[str]:
        """Replace the selection with *option_ids*.

        Args:
            option_ids: The full desired selection

        Returns:
            The new effective selection

        Raises:
            ValueError: If an option id is not a known scope option
        """
        requested = frozenset(option_ids)
        unknown = [o for o in requested if not ClearScope.is_known(o)]
        if unknown:
            raise ValueError(f"Unknown clear scope option(s): {sorted(unknown)}")

        effective = frozenset(o for o in requested if self.is_selectable(o))
        dropped = requested - effective
        if dropped:
            logger.debug("Filtered unselectable scope options: %s", sorted(dropped))
        self._selected = effective
        return effective

    def toggle(self, option_id: str) -> frozenset[str]:
        """Flip one option and return the new selection."""
        if option_id in self._selected:
            return self.select(self._selected - {option_id})
        return self.select(self._selected | {option_id})

    def reset(self, has_logical_date: bool | None = None) -> None:
        """Restore the default selection, optionally for a new instance."""
        if has_logical_date is not None:
            self._has_logical_date = has_logical_date
        self._selected = ClearScope.DEFAULT

    @property
    def effective(self) -> ClearScopeOptions:
        """The selection as request flags."""
        selected = self._selected
        return ClearScopeOptions(
            past=ClearScope.PAST in selected,
            future=ClearScope.FUTURE in selected,
            upstream=ClearScope.UPSTREAM in selected,
            downstream=ClearScope.DOWNSTREAM in selected,
            only_failed=ClearScope.ONLY_FAILED in selected,
        )
