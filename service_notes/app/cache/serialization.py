"""
Typed JSON serialization for cached note views.

Values are wrapped in an envelope carrying a type tag so a cached payload is
rebuilt into the same model it was written from, including the free-form
``content`` document and timestamps.
"""

import json
from typing import Any, Dict, List, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from ..notes.models import Note


NOTE_TYPE = "Note"
NOTE_LIST_TYPE = "List[Note]"

_ADAPTERS: Dict[str, TypeAdapter] = {
    NOTE_TYPE: TypeAdapter(Note),
    NOTE_LIST_TYPE: TypeAdapter(List[Note]),
}


class SerializationError(ValueError):
    """Cached payload could not be encoded or decoded."""


class CacheSerializer:
    """Encode notes and note lists to envelope JSON and back."""

    def dumps(self, value: Union[Note, List[Note]]) -> str:
        if isinstance(value, Note):
            type_tag = NOTE_TYPE
        elif isinstance(value, list) and all(isinstance(item, Note) for item in value):
            type_tag = NOTE_LIST_TYPE
        else:
            raise SerializationError(f"Unsupported cache value type: {type(value).__name__}")

        payload = _ADAPTERS[type_tag].dump_python(value, mode="json")
        return json.dumps({"@type": type_tag, "value": payload}, separators=(",", ":"))

    def loads(self, raw: Union[str, bytes]) -> Any:
        try:
            envelope = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise SerializationError(f"Malformed cache payload: {exc}") from exc

        if not isinstance(envelope, dict) or "@type" not in envelope:
            raise SerializationError("Cache payload is missing its type tag")

        adapter = _ADAPTERS.get(envelope["@type"])
        if adapter is None:
            raise SerializationError(f"Unknown cache payload type: {envelope['@type']}")

        try:
            return adapter.validate_python(envelope.get("value"))
        except PydanticValidationError as exc:
            raise SerializationError(f"Cache payload does not match {envelope['@type']}") from exc
