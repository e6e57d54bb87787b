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

"""brainrun patch engine.

Structural forward diffs between two state documents, expressed as
RFC 6902 JSON Patch operation lists, and their application. The diff
and apply work is done by ``jsonpatch``.

Patches are the only durable unit of progress: replaying
:func:`apply_patches` over the patches of every ``step:complete`` event,
starting at the initial state, reproduces the current state exactly.

Inputs are never mutated and outputs never share structure with inputs.
"""

import copy
from collections.abc import Iterable
from typing import Any

import jsonpatch
from jsonpointer import JsonPointerException

from .errors import InvalidPatchError, PatchTestFailedError

JsonPatch = list[dict[str, Any]]


def create_patch(prev: Any, next_: Any) -> JsonPatch:
    """Compute the patch that turns ``prev`` into ``next_``.

    Returns an empty list when the documents are equal.
    """
    return copy.deepcopy(jsonpatch.make_patch(prev, next_).patch)


def apply_patch(document: Any, patch: JsonPatch) -> Any:
    """Apply one patch to a copy of ``document``.

    Raises:
        PatchTestFailedError: If a ``test`` operation does not match
        InvalidPatchError: If an operation is malformed or cannot be applied
    """
    result = copy.deepcopy(document)
    for operation in copy.deepcopy(list(patch)):
        op = str(operation.get("op", "")) if isinstance(operation, dict) else ""
        path = str(operation.get("path", "")) if isinstance(operation, dict) else ""
        try:
            result = jsonpatch.apply_patch(result, [operation], in_place=True)
        except jsonpatch.JsonPatchTestFailed as error:
            raise PatchTestFailedError(op, path, str(error)) from error
        except (jsonpatch.JsonPatchException, JsonPointerException) as error:
            raise InvalidPatchError(op, path, str(error)) from error
    return result


def apply_patches(document: Any, patches: Iterable[JsonPatch]) -> Any:
    """Apply patches in order, starting from a copy of ``document``."""
    result = copy.deepcopy(document)
    for patch in patches:
        if patch:
            result = apply_patch(result, patch)
    return result
