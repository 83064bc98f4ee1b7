"""
Canonical Serializer
====================

Deterministic, whitespace-free, key-sorted JSON encoding. This is the exact
byte sequence that every signer hashes and every verifier recomputes, so it
is implemented once here and imported everywhere else.

Format:
- object keys sorted by UTF-16 code units at every nesting level
  (the order JavaScript's ``Array.prototype.sort`` gives string keys)
- arrays keep source order
- no whitespace between tokens
- strings escaped as ``JSON.stringify`` escapes them (non-ASCII emitted raw)
- integers limited to the safe range (|n| <= 2**53 - 1)
- numbers formatted with ECMAScript ``Number::toString`` rules
  (``1.0`` -> ``1``, ``1e21`` -> ``1e+21``, ``1e-7`` -> ``1e-7``)
"""

import json
import math
import re
from decimal import Decimal
from typing import Any, Dict

from eth_utils import keccak, to_hex

from .errors import ValidationError

_LONE_SURROGATE = re.compile("[\ud800-\udfff]")
MAX_SAFE_INTEGER = 2 ** 53 - 1


def canonicalize(value: Any) -> str:
    """
    Serialize a structured value into its canonical string form.

    Args:
        value: dict / list / tuple / str / int / float / bool / None tree

    Returns:
        Canonical JSON string

    Raises:
        ValidationError: for non-string keys, NaN/Infinity, integers beyond
            2**53 - 1 in magnitude or unsupported types
    """
    parts: list = []
    _encode(value, parts)
    return "".join(parts)


def canonical_bytes(value: Any) -> bytes:
    """UTF-8 bytes of :func:`canonicalize`."""
    return canonicalize(value).encode("utf-8")


def keccak_hex(value: Any) -> str:
    """keccak256 of the canonical bytes, ``0x``-prefixed hex."""
    return to_hex(keccak(canonical_bytes(value)))


def without_field(obj: Dict[str, Any], field: str) -> Dict[str, Any]:
    """Shallow copy of ``obj`` with exactly one top-level key removed."""
    return {k: v for k, v in obj.items() if k != field}


# ==================== ENCODER ====================

def _encode(value: Any, out: list) -> None:
    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, str):
        out.append(_encode_string(value))
    elif isinstance(value, int):
        # beyond this a JavaScript signer would have seen a rounded double
        if abs(value) > MAX_SAFE_INTEGER:
            raise ValidationError(f"Integer {value} is outside the safe integer range")
        out.append(str(value))
    elif isinstance(value, float):
        out.append(format_number(value))
    elif isinstance(value, dict):
        for key in value:
            if not isinstance(key, str):
                raise ValidationError(f"Object keys must be strings, got {type(key).__name__}")
        out.append("{")
        for i, key in enumerate(sorted(value, key=_utf16_sort_key)):
            if i:
                out.append(",")
            out.append(_encode_string(key))
            out.append(":")
            _encode(value[key], out)
        out.append("}")
    elif isinstance(value, (list, tuple)):
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _encode(item, out)
        out.append("]")
    else:
        raise ValidationError(f"Cannot canonicalize value of type {type(value).__name__}")


def _utf16_sort_key(key: str) -> bytes:
    # Big-endian UTF-16 bytes compare in code-unit order, matching JS string sort
    return key.encode("utf-16-be", "surrogatepass")


def _encode_string(text: str) -> str:
    encoded = json.dumps(text, ensure_ascii=False)
    # Lone surrogates are escaped, as well-formed JSON.stringify does
    return _LONE_SURROGATE.sub(lambda m: "\\u%04x" % ord(m.group()), encoded)


def format_number(number: float) -> str:
    """
    Format a float the way ECMAScript ``Number::toString`` does.

    Raises:
        ValidationError: for NaN and infinities, which have no JSON form
    """
    if math.isnan(number) or math.isinf(number):
        raise ValidationError("NaN and Infinity cannot be canonicalized")
    if number == 0:
        return "0"

    sign = "-" if number < 0 else ""
    # repr() yields the shortest round-tripping digits, same as ECMAScript
    _, digit_tuple, exponent = Decimal(repr(abs(number))).as_tuple()
    raw = "".join(str(d) for d in digit_tuple)
    digits = raw.rstrip("0")
    exponent += len(raw) - len(digits)

    k = len(digits)
    n = exponent + k  # position of the decimal point relative to the digits

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        exp = ("+" if e >= 0 else "-") + str(abs(e))
        if k == 1:
            body = digits + "e" + exp
        else:
            body = digits[0] + "." + digits[1:] + "e" + exp
    return sign + body
