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

"""Run-on-latest-version policy.

A task instance is bound to the bundle version of the workflow definition
it ran against. When the workflow has since moved to a different bundle
version, the operator may choose to clear the instance onto the latest
version instead.
"""


def is_run_on_latest_eligible(
    current_version: str | None,
    bound_version: str | None,
    single_instance: bool = True,
) -> bool:
    """Check if the run-on-latest-version choice should be offered.

    Only a single instance carries one bound version; task groups and
    all-mapped selections never qualify. An instance with no bound
    version (null or empty) never qualifies, even when versions differ.

    >>> is_run_on_latest_eligible("v2", "v1")
    True
    >>> is_run_on_latest_eligible("v2", "")
    False
    >>> is_run_on_latest_eligible("v2", "v1", single_instance=False)
    False
    """
    if not single_instance:
        return False
    if bound_version is None or bound_version == "":
        return False
    return current_version != bound_version


class RunOnLatestVersionToggle:
    """Holds the run-on-latest-version checkbox of one open flow.

    The value is never true while the choice is ineligible: becoming
    ineligible resets it, and setting it while ineligible is ignored.
    """

    def __init__(self) -> None:
        self._eligible = False
        self._checked = False

    @property
    def eligible(self) -> bool:
        return self._eligible

    @property
    def value(self) -> bool:
        return self._eligible and self._checked

    def set_eligible(self, eligible: bool) -> None:
        self._eligible = eligible
        if not eligible:
            self._checked = False

    def set(self, checked: bool) -> bool:
        """Set the checkbox; returns the effective value."""
        if self._eligible:
            self._checked = checked
        return self.value

    def reset(self) -> None:
        self._eligible = False
        self._checked = False
