"""
Test Helpers
============

Helper functions for testing.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List

API_TOKEN = "test-token"

__all__ = [
    "API_TOKEN",
    "wait_for_condition",
    "parse_sse_frames",
    "decode_json_frame",
    "scenario_a_chunks",
    "collect",
]


async def wait_for_condition(
    condition: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01
) -> bool:
    """Wait for a condition to be true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if condition():
            return True
        await asyncio.sleep(interval)
    return condition()


def parse_sse_frames(body: str) -> List[str]:
    """Split an event stream body into frame payloads, without the ``data: `` prefix."""
    frames = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            frames.append(block[len("data: "):])
    return frames


def decode_json_frame(payload: str) -> Dict[str, Any]:
    return json.loads(payload)


def scenario_a_chunks() -> List[bytes]:
    """Agent body for the reply 'Variables are containers.'."""
    return [
        b"data: Vari\n\n",
        b"data: ables are\n\n",
        b"data:  containers.\n\n",
        b"data: [DONE]\n\n",
    ]


async def collect(iterator) -> List[Any]:
    """Drain an async iterator into a list."""
    return [item async for item in iterator]
