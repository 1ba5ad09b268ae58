"""Contract tests for event sink protocol completeness.

Ensures every sink implements all methods of the GateEventSink protocol.
"""

import inspect

import pytest

from fixgate.core.protocols import GateEventSink
from fixgate.infra.io.event_sink import ConsoleEventSink, NullEventSink
from tests.fakes.event_sink import FakeEventSink


def _public_methods(cls: type) -> set[str]:
    return {
        name
        for name, _ in inspect.getmembers(cls, predicate=inspect.isfunction)
        if not name.startswith("_")
    }


@pytest.mark.unit
@pytest.mark.parametrize("sink_cls", [NullEventSink, ConsoleEventSink, FakeEventSink])
def test_sink_implements_all_protocol_methods(sink_cls: type) -> None:
    missing = _public_methods(GateEventSink) - _public_methods(sink_cls)
    assert not missing, f"{sink_cls.__name__} missing protocol methods: {sorted(missing)}"


@pytest.mark.unit
def test_fake_event_sink_has_event_helper() -> None:
    sink = FakeEventSink()

    assert not sink.has_event("batch_started")

    sink.on_batch_started(3, 2)
    assert sink.has_event("batch_started")
    assert sink.events == [("batch_started", (3, 2))]
