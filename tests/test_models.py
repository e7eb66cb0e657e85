from __future__ import annotations

import json

from conftest import make_thread

from thread_memory.core.types import Role
from thread_memory.memory.accumulator import TurnAttributes, append_turn
from thread_memory.storage.models import Thread


def test_round_trip_preserves_every_field():
    thread = make_thread(5)
    thread = append_turn(
        thread,
        Role.OUTBOUND,
        "final",
        TurnAttributes(model="m", tool="chat", files=["x.py"], input_tokens=3, output_tokens=9),
    )
    thread.initial_parameters = {"focus": "security", "depth": 2}
    thread.parent_thread_id = "parent-1"
    thread.version = 4

    restored = Thread.from_dict(json.loads(json.dumps(thread.to_dict())))

    assert restored == thread
    assert [t.content for t in restored.turns] == [t.content for t in thread.turns]
    assert restored.turns[-1].files == ("x.py",)
    assert restored.turns[-1].role is Role.OUTBOUND
