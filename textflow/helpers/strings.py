"""String and serialization utilities."""

import json

from fastapi.encoders import jsonable_encoder


def normalize_text(value: str | None) -> str:
    """Trim surrounding whitespace; ``None`` becomes an empty string."""
    return (value or "").strip()


def safe_json_dumps(data) -> str:
    """Safely dump data to JSON string with FastAPI encoding.

    Args:
        data: The data to serialize.

    Returns:
        The JSON string.
    """
    return json.dumps(jsonable_encoder(data), ensure_ascii=False)
