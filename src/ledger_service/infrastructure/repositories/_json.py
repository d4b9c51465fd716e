import json
from typing import Any


def dump_json(value: dict[str, Any] | None) -> str:
    return json.dumps(value or {}, sort_keys=True)


def load_json(value: Any) -> dict[str, Any]:
    # asyncpg hands JSONB back as text unless a codec is registered
    if value is None:
        return {}
    if isinstance(value, str | bytes):
        loaded: dict[str, Any] = json.loads(value)
        return loaded
    return dict(value)
