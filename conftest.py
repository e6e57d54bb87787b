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

"""Root pytest configuration for brainrun tests."""

import operator


def _patch_mongomock_objectid():
    """Add ordering support to mongomock ObjectId.

    mongomock's ObjectId defines equality but no ordering, so sorting
    documents by ``_id`` raises TypeError on recent Python versions.
    """
    try:
        from mongomock.object_id import ObjectId
    except ImportError:
        return

    if hasattr(ObjectId, "_cmp_patched"):
        return

    def _ordering(compare):
        def method(self, other):
            if not isinstance(other, ObjectId):
                return NotImplemented
            return compare(str(self._id), str(other._id))

        return method

    ObjectId.__lt__ = _ordering(operator.lt)
    ObjectId.__le__ = _ordering(operator.le)
    ObjectId.__gt__ = _ordering(operator.gt)
    ObjectId.__ge__ = _ordering(operator.ge)
    ObjectId._cmp_patched = True


_patch_mongomock_objectid()


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--mongodb",
        action="store_true",
        default=False,
        help="Run MongoDB tests against a real server (uses brainrun config for connection)",
    )
