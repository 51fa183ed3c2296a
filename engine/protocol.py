# engine/protocol.py
import json
from typing import Any, Dict, List, NamedTuple, Tuple, Union

from pydantic import ValidationError

from engine.errors import ProtocolError
from engine.models import BlockRecord

SNAPSHOT_TYPE = "recentBlocks"
INCREMENT_TYPE = "newBlock"


class SnapshotMessage(NamedTuple):
    records: Tuple[BlockRecord, ...]
    # entries dropped because they failed validation
    rejected: int = 0


class IncrementMessage(NamedTuple):
    record: BlockRecord


class UnknownMessage(NamedTuple):
    kind: str
    payload: Dict[str, Any]


FeedMessage = Union[SnapshotMessage, IncrementMessage, UnknownMessage]


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location or 'record'}: {item.get('msg')}")
    return "; ".join(parts)


def parse_record(data: Any) -> BlockRecord:
    if not isinstance(data, dict):
        raise ProtocolError(f"Block record must be an object, got {type(data).__name__}", data)
    try:
        return BlockRecord.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid block record: {_summarize(e)}", data) from e


def parse_message(raw: Union[str, bytes, Dict[str, Any]]) -> FeedMessage:
    """
    Decode one feed message into a snapshot, an increment or an unknown kind.

    Raises ProtocolError for anything that is not a JSON object with a
    string ``type``, for a snapshot whose ``data`` is not a list and for an
    increment whose record does not validate. Malformed entries inside a
    snapshot are dropped and counted instead.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            message = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Message is not valid JSON: {e}", raw) from e
    else:
        message = raw

    if not isinstance(message, dict):
        raise ProtocolError(f"Message must be a JSON object, got {type(message).__name__}", message)

    kind = message.get("type")
    if not isinstance(kind, str):
        raise ProtocolError("Message has no string 'type' field", message)

    if kind == SNAPSHOT_TYPE:
        data = message.get("data")
        if not isinstance(data, list):
            raise ProtocolError("Snapshot 'data' must be a list of blocks", message)
        records: List[BlockRecord] = []
        rejected = 0
        for entry in data:
            try:
                records.append(parse_record(entry))
            except ProtocolError:
                rejected += 1
        return SnapshotMessage(tuple(records), rejected)

    if kind == INCREMENT_TYPE:
        return IncrementMessage(parse_record(message.get("data")))

    return UnknownMessage(kind, message)
