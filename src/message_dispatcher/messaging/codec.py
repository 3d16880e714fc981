# Copyright 2026 Firefly Software Solutions Inc.
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
"""JSON codec backed by pydantic TypeAdapter.

Handles pydantic models, dataclasses, TypedDicts and builtin types with the
same code path. The consumer picks the decode target from the registered
handler's signature, never from a producer-side type discriminator.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from message_dispatcher.kernel.exceptions import DecodingException, EncodingException

# Type discriminators some producers attach; stripped before every publish.
DISCRIMINATOR_HEADERS = frozenset({"__TypeId__", "__ContentTypeId__", "__KeyTypeId__"})


@lru_cache(maxsize=512)
def _adapter(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


class JsonCodec:
    """Default Codec: UTF-8 JSON."""

    content_type = "application/json"
    discriminator_headers = DISCRIMINATOR_HEADERS

    def encode(self, payload: Any) -> bytes:
        try:
            return _adapter(Any).dump_json(payload, by_alias=True)
        except (PydanticSerializationError, TypeError, ValueError) as exc:
            raise EncodingException(
                f"Cannot encode payload of type {type(payload).__name__}: {exc}",
                code="ENCODING",
            ) from exc

    def decode(self, body: bytes, target: Any = Any) -> Any:
        try:
            return _adapter(target).validate_json(body)
        except ValidationError as exc:
            raise DecodingException(
                f"Cannot decode body into {self.type_name(target)}: {exc}",
                code="DECODING",
                context={"target": self.type_name(target)},
            ) from exc

    def convert(self, value: Any, target: Any = Any) -> Any:
        """Coerce an already-decoded JSON value (e.g. a reply's value) into target."""
        if target is None or target is Any:
            return value
        try:
            return _adapter(target).validate_python(value)
        except ValidationError as exc:
            raise DecodingException(
                f"Cannot convert value into {self.type_name(target)}: {exc}",
                code="DECODING",
                context={"target": self.type_name(target)},
            ) from exc

    @staticmethod
    def type_name(payload_or_type: Any) -> str:
        """Stable short name for a payload or payload type."""
        target = payload_or_type if isinstance(payload_or_type, type) else type(payload_or_type)
        origin = getattr(payload_or_type, "__origin__", None)
        if origin is not None:
            target = origin
        return getattr(target, "__name__", str(target))
