"""Record decoder adapters.

A decoder turns one isolated record (``bytes`` holding a single JSON object)
into a value and raises on anything that is not a valid instance. The parser
never retries a decoder; it wraps whatever is raised in ``DecodeError``.
``decode_value`` takes an already tokenized object and backs the ``tokenized``
strategy.
"""
import json
from typing import Any, Callable, Protocol, Union

from pydantic import TypeAdapter


class RecordDecoder(Protocol):
    def decode(self, raw: bytes) -> Any: ...

    def decode_value(self, obj: Any) -> Any: ...


class JSONRecordDecoder:
    """Decode records into plain dicts with the stdlib ``json`` module."""

    def decode(self, raw: bytes) -> dict:
        return self.decode_value(json.loads(raw))

    def decode_value(self, obj: Any) -> dict:
        if not isinstance(obj, dict):
            raise TypeError(f"expected a JSON object, got {type(obj).__name__}")
        return obj


class ModelRecordDecoder:
    """Validate records against a pydantic model (or any type pydantic accepts)."""

    def __init__(self, model: Any):
        self.model = model
        self._adapter = TypeAdapter(model)

    def decode(self, raw: bytes) -> Any:
        return self._adapter.validate_json(raw)

    def decode_value(self, obj: Any) -> Any:
        return self._adapter.validate_python(obj)

    def __repr__(self):
        return f"ModelRecordDecoder({getattr(self.model, '__name__', self.model)!r})"


class FunctionDecoder:
    """Adapt a plain ``fn(raw_bytes) -> value`` callable."""

    def __init__(self, fn: Callable[[bytes], Any]):
        self.fn = fn

    def decode(self, raw: bytes) -> Any:
        return self.fn(raw)

    def decode_value(self, obj: Any) -> Any:
        return self.fn(json.dumps(obj).encode('utf-8'))


def as_decoder(decoder: Union[None, type, Callable, RecordDecoder]) -> RecordDecoder:
    """Normalise what callers pass as ``decoder``.

    ``None`` gives dicts, a type (pydantic model, dataclass, TypedDict) gives
    validated instances, a bare callable is called with the raw record bytes.
    """
    if decoder is None:
        return JSONRecordDecoder()
    if hasattr(decoder, 'decode') and not isinstance(decoder, type):
        return decoder
    if isinstance(decoder, type):
        return ModelRecordDecoder(decoder)
    if callable(decoder):
        return FunctionDecoder(decoder)
    raise TypeError(f"unsupported decoder: {decoder!r}")
