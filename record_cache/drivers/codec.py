"""
Byte encoding shared by the out-of-process drivers.

Pickle keeps any picklable key or value type intact across the round
trip. Only trusted processes may write to the backing store.
"""
import pickle
from typing import Any

# Pinned so encoded keys stay identical across interpreter versions
PICKLE_PROTOCOL = 4

ENCODE_ERRORS = (pickle.PicklingError, TypeError, AttributeError)
DECODE_ERRORS = (
    pickle.UnpicklingError, EOFError, AttributeError,
    ImportError, IndexError, TypeError, ValueError,
)


def encode(obj: Any) -> bytes:
    return pickle.dumps(obj, protocol=PICKLE_PROTOCOL)


def decode(raw: bytes) -> Any:
    return pickle.loads(raw)
