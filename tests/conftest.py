import sys
from pathlib import Path
from typing import Any, List

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from contextrelay.models import Message  # noqa: E402
from contextrelay.settings import Settings  # noqa: E402


class FakeTransport:
    """Scripted transport: each call pops the next reply (str) or raises it (exception)."""

    def __init__(self, script: List[Any] | None = None, default: str = "Acknowledged") -> None:
        self.script = list(script or [])
        self.default = default
        self.calls: List[List[Message]] = []

    async def send_messages(self, messages, **kwargs) -> str:
        self.calls.append(list(messages))
        reply = self.script.pop(0) if self.script else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from .env, with a small budget and no inter-part delay."""
    values: dict[str, Any] = {
        "openai_api_key": "test-key",
        "max_tokens_per_message": 1000,
        "token_estimation_ratio": 4,
        "include_context_summary": True,
        "inter_part_delay_seconds": 0,
        "strategy": "auto",
        "redis_url": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
