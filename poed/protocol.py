"""
IPC message codec.

One JSON document per message, UTF-8:

    request:  {"msg_type": "request", "data": "get_all"}
    response: {"msg_type": "response", "data": <snapshot or "">, "error_msg": ""}

A bad request is not an exception at the server boundary: it is answered
with ``data: ""`` and one of the fixed error strings below, and the
connection stays open.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

MSG_REQUEST = "request"
MSG_RESPONSE = "response"
CMD_GET_ALL = "get_all"

ERR_JSON = "JSON parsing error"
ERR_NO_MSG_TYPE = "Field 'msg_type' wasn't found"
ERR_WRONG_MSG_TYPE = "Wrong 'msg_type'"
ERR_NO_DATA = "Field 'data' wasn't found"
ERR_UNKNOWN_COMMAND = "Unrecognized command"

JSON_INDENT = 4

log = logging.getLogger(__name__)


class ProtocolError(ValueError):
    """Malformed request; ``str(ex)`` is the error_msg sent back."""


@dataclass(frozen=True)
class Request:
    msg_type: str
    data: str


def _string_field(msg: Any, name: str) -> Any:
    if not isinstance(msg, dict):
        return None
    value = msg.get(name)
    return value if isinstance(value, str) else None


def parse_request(text: str) -> Request:
    try:
        msg = json.loads(text)
    except ValueError as ex:
        raise ProtocolError(ERR_JSON) from ex

    msg_type = _string_field(msg, "msg_type")
    if msg_type is None:
        raise ProtocolError(ERR_NO_MSG_TYPE)
    if msg_type != MSG_REQUEST:
        raise ProtocolError(ERR_WRONG_MSG_TYPE)

    data = _string_field(msg, "data")
    if data is None:
        raise ProtocolError(ERR_NO_DATA)

    return Request(msg_type, data)


def build_request(command: str = CMD_GET_ALL) -> str:
    return json.dumps({"msg_type": MSG_REQUEST, "data": command}, indent=JSON_INDENT)


def build_response(data: Any = "", error_msg: str = "") -> str:
    return json.dumps(
        {"msg_type": MSG_RESPONSE, "data": data, "error_msg": error_msg},
        indent=JSON_INDENT,
    )


def handle_message(text: str, snapshot: Callable[[], Any]) -> str:
    """Turn one raw request into the raw response text."""
    try:
        req = parse_request(text)
    except ProtocolError as ex:
        log.warning(f"Bad request, {ex}: {text!r}")
        return build_response("", str(ex))

    if req.data == CMD_GET_ALL:
        return build_response(snapshot(), "")
    return build_response("", ERR_UNKNOWN_COMMAND)
