"""
Durable snapshot of the token table.

The whole table is rewritten after every mutation. Writes go to a sibling
temporary file that is then renamed over the snapshot, so a crash never
leaves a half-written file behind.

Security Note:
    The snapshot contains envelopes only. It is safe to back up without the
    master secret, and useless without it.
"""
import os
import logging
from pathlib import Path
from typing import Any

import orjson
from pydantic import ValidationError

from ..exceptions import InfrastructureError
from .models import StoredToken

logger = logging.getLogger("credential_vault.vault")

TokenTable = dict[str, list[StoredToken]]


def serialize_table(table: TokenTable) -> bytes:
    """Serialize the table to orjson bytes."""
    data: dict[str, Any] = {
        user_id: [token.model_dump(mode="json") for token in tokens]
        for user_id, tokens in table.items()
    }
    return orjson.dumps(data, option=orjson.OPT_INDENT_2)


def deserialize_table(data: bytes) -> TokenTable:
    """Parse snapshot bytes back into a table.

    Raises:
        ValueError: If the payload is not a valid snapshot.
    """
    parsed = orjson.loads(data)
    if not isinstance(parsed, dict):
        raise ValueError("Snapshot root must be an object")
    table: TokenTable = {}
    for user_id, items in parsed.items():
        if not isinstance(items, list):
            raise ValueError(f"Snapshot entry for user {user_id} is not a list")
        table[user_id] = [StoredToken.model_validate(item) for item in items]
    return table


def load_snapshot(path: Path) -> TokenTable:
    """Load the table from disk.

    A missing or unreadable snapshot is never fatal: the store starts empty.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        logger.info("No token snapshot at %s, starting empty", path)
        return {}
    except OSError as err:
        logger.warning("Cannot read token snapshot %s (%s), starting empty", path, err)
        return {}
    try:
        table = deserialize_table(raw)
    except (orjson.JSONDecodeError, ValidationError, ValueError) as err:
        logger.warning("Token snapshot %s is corrupt (%s), starting empty", path, err)
        return {}
    logger.info("Loaded tokens for %d user(s) from %s", len(table), path)
    return table


def write_snapshot(path: Path, data: bytes) -> None:
    """Atomically replace the snapshot file.

    Raises:
        InfrastructureError: If the file cannot be written.
    """
    tmp = path.with_name(f"{path.name}.tmp")
    try:
        if not path.parent.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "wb") as fp:
            fp.write(data)
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(tmp, path)
    except OSError as err:
        logger.error("Failed to write token snapshot %s: %s", path, err)
        raise InfrastructureError(f"Failed to write token snapshot: {err}") from err


def delete_snapshot(path: Path) -> bool:
    """Remove the snapshot file. Returns whether a file was removed.

    Raises:
        InfrastructureError: If the file exists but cannot be removed.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as err:
        logger.error("Failed to delete token snapshot %s: %s", path, err)
        raise InfrastructureError(f"Failed to delete token snapshot: {err}") from err
    return True
