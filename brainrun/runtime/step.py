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

"""brainrun per-run step instances."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .blocks import Block, ConditionalBlock, StepBlock
from .errors import ResumeContextError
from .types import Status, StepId, step_id


class Branch:
    """Position of a step within a conditional pair."""

    THEN = "then"
    ELSE = "else"


@dataclass
class Step:
    """Per-run wrapper tracking one block's execution.

    A conditional block yields two steps, one per branch, that share the
    same ``block`` and differ in ``branch``.
    """

    block: Block
    id: StepId = field(default_factory=step_id)
    status: str = Status.PENDING
    patch: list[dict[str, Any]] | None = None
    branch: str | None = None

    @property
    def title(self) -> str:
        return self.branch_block.title if self.branch else self.block.title

    @property
    def branch_block(self) -> StepBlock:
        """The step block of this branch of a conditional."""
        assert isinstance(self.block, ConditionalBlock)
        if self.branch == Branch.THEN:
            return self.block.then_block
        return self.block.else_block

    def with_status(self, status: str) -> "Step":
        self.status = status
        return self

    def with_patch(self, patch: list[dict[str, Any]]) -> "Step":
        self.patch = patch
        return self

    def status_dict(self) -> dict[str, Any]:
        """Serialized form used by ``step:status`` events (no patch)."""
        return {"id": self.id, "title": self.title, "status": self.status}

    def serialized(self) -> dict[str, Any]:
        """Serialized form including the patch, if any."""
        result = self.status_dict()
        if self.patch is not None:
            result["patch"] = self.patch
        return result


def build_steps(blocks: Sequence[Block]) -> list[Step]:
    """Create fresh step instances for a block list."""
    steps: list[Step] = []
    for block in blocks:
        if isinstance(block, ConditionalBlock):
            steps.append(Step(block=block, branch=Branch.THEN))
            steps.append(Step(block=block, branch=Branch.ELSE))
        else:
            steps.append(Step(block=block))
    return steps


def restore_steps(
    steps: list[Step], step_index: int, records: Sequence[dict[str, Any]] | None = None
) -> list[Step]:
    """Apply resume bookkeeping to freshly built steps.

    Steps before ``step_index`` are done; their status is taken from
    ``records`` when available (``complete`` or ``skipped``) and
    defaults to ``complete``. Record ids are kept for every position
    they cover so a step keeps its id across suspensions.

    Raises:
        ResumeContextError: If the index or records do not fit the steps
    """
    if step_index < 0 or step_index > len(steps):
        raise ResumeContextError(
            f"step index {step_index} out of range for {len(steps)} steps"
        )
    records = list(records or [])
    if len(records) > len(steps):
        raise ResumeContextError(
            f"{len(records)} step records for a brain with {len(steps)} steps"
        )
    for position, record in enumerate(records):
        steps[position].id = StepId(record["id"])
    for position in range(step_index):
        status = Status.COMPLETE
        if position < len(records) and Status.is_done(records[position].get("status", "")):
            status = records[position]["status"]
        steps[position].status = status
    return steps
