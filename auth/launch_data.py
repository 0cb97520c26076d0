"""
auth/launch_data.py -- Telegram Mini App launch data: parsing and signature checks.

Wire format: the client forwards Telegram.WebApp.initData unchanged -- a
query string with percent-encoded values, e.g.

    query_id=AAH...&user=%7B%22id%22%3A123%2C...%7D&auth_date=1700000000&hash=ab12...

Verification (must match Telegram bit for bit):
  1. Drop the `hash` pair.
  2. Render every other pair as "key=value", value exactly as decoded.
  3. Sort the rendered lines (full-string comparison, not by key alone).
  4. Join with "\n" -> data-check-string.
  5. secret_key = HMAC_SHA256(key="WebAppData", msg=bot_token)
  6. signature  = hex(HMAC_SHA256(key=secret_key, msg=data_check_string))

Python str ordering is by code point, which is the same as UTF-8 byte order,
so sorted() yields Telegram's ordering for any non-ASCII values too.

Security:
  A missing `hash` never verifies. The comparison uses hmac.compare_digest.
  Raw init data and claim payloads are never logged.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, unquote

from auth.errors import ParseError
from auth.models import IdentityClaim, LaunchData

logger = logging.getLogger("miniapp.auth.launch_data")

SIGNATURE_KEY = "hash"
USER_KEY = "user"

# Fixed HMAC key defined by the Telegram Mini Apps protocol.
_WEB_APP_DATA = b"WebAppData"

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")


# ---------------------------------------------------------------------------
# Signature verifier
# ---------------------------------------------------------------------------


def build_check_string(pairs: Iterable[tuple[str, str]]) -> str:
    """Return the canonical data-check-string for the given pairs.

    Pairs keyed `hash` are excluded. Multi-valued keys contribute one line
    per value.
    """
    lines = [f"{key}={value}" for key, value in pairs if key != SIGNATURE_KEY]
    return "\n".join(sorted(lines))


def derive_secret_key(bot_token: str) -> bytes:
    return hmac.new(_WEB_APP_DATA, bot_token.encode("utf-8"), hashlib.sha256).digest()


def compute_signature(pairs: Iterable[tuple[str, str]], bot_token: str) -> str:
    """Return the lowercase hex signature Telegram would produce for pairs."""
    check_string = build_check_string(pairs)
    return hmac.new(
        derive_secret_key(bot_token),
        check_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(pairs: Iterable[tuple[str, str]], bot_token: str, signature: str | None) -> bool:
    """Return True only if signature matches the pairs under bot_token.

    Fails closed: an absent or empty signature, or an empty bot token, is a
    mismatch. Skipping verification is the orchestrator's decision (test mode),
    never this function's.
    """
    if not signature or not bot_token:
        return False
    expected = compute_signature(pairs, bot_token)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def parse_launch_data(raw: str) -> LaunchData:
    """Decode raw init data into LaunchData. Raises ParseError on bad input."""
    if not raw or not raw.strip():
        raise ParseError("launch data is empty")

    try:
        decoded = parse_qsl(raw, keep_blank_values=True)
    except ValueError as exc:
        raise ParseError("launch data is not a valid query string") from exc

    signature: str | None = None
    user_value: str | None = None
    pairs: list[tuple[str, str]] = []
    for key, value in decoded:
        if key == SIGNATURE_KEY:
            if signature is None:
                signature = value
            continue
        if key == USER_KEY and user_value is None:
            user_value = value
        pairs.append((key, value))

    if user_value is None:
        raise ParseError("launch data has no user field")

    return LaunchData(pairs=tuple(pairs), user=_parse_user(user_value), signature=signature)


def _parse_user(value: str) -> IdentityClaim:
    """Decode the `user` JSON object, tolerating one extra layer of percent-encoding."""
    try:
        data = json.loads(value)
    except RecursionError:
        raise ParseError("user field is nested too deeply") from None
    except ValueError:
        if "%" not in value:
            raise ParseError("user field is not valid JSON") from None
        try:
            data = json.loads(unquote(value))
            logger.debug("user field was percent-encoded twice")
        except RecursionError:
            raise ParseError("user field is nested too deeply") from None
        except ValueError:
            raise ParseError("user field is not valid JSON") from None

    if not isinstance(data, dict):
        raise ParseError("user field is not a JSON object")
    if "id" not in data:
        raise ParseError("user field has no id")

    return IdentityClaim(
        id=parse_platform_id(data["id"]),
        first_name=_text(data.get("first_name")),
        last_name=_text(data.get("last_name")),
        username=_text(data.get("username")),
        language_code=_text(data.get("language_code")),
        photo_url=_text(data.get("photo_url")),
        allows_write_to_pm=bool(data.get("allows_write_to_pm", False)),
    )


def parse_platform_id(value) -> int:
    """Return value as a signed 64-bit int. Raises ParseError otherwise.

    Accepts JSON integers and decimal strings. Booleans, floats and strings
    with surrounding whitespace are rejected.
    """
    if isinstance(value, bool):
        raise ParseError("user id is not numeric")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _DECIMAL.fullmatch(value):
        number = int(value)
    else:
        raise ParseError("user id is not numeric")
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ParseError("user id does not fit in 64 bits")
    return number


def _text(value) -> str:
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Legacy test shim
# ---------------------------------------------------------------------------


def parse_legacy_test_payload(raw: str) -> IdentityClaim:
    """Parse the old flat test format: user_id=..&username=..&first_name=..&last_name=..

    Kept only for the test-mode endpoint. Production launch data always uses
    the JSON `user` field handled by parse_launch_data().
    """
    if not raw or not raw.strip():
        raise ParseError("launch data is empty")
    values: dict[str, str] = {}
    for key, value in parse_qsl(raw, keep_blank_values=True):
        values.setdefault(key, value)
    if not values.get("user_id"):
        raise ParseError("user_id not found in launch data")
    return IdentityClaim(
        id=parse_platform_id(values["user_id"]),
        username=values.get("username", ""),
        first_name=values.get("first_name", ""),
        last_name=values.get("last_name", ""),
    )
