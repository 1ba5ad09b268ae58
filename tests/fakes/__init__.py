"""In-memory fake implementations for testing.

Fakes implement the real protocol contracts in fixgate/core/protocols.py, so
interface mismatches surface at test time, and let tests assert on outputs
and recorded state instead of call order.

Available fakes:
- FakeVersionControl: commits and trees held in memory (VersionControlPort)
- FakeTestRunner: scripted per-stage results, records every run (RunnerPort)
- FakeEventSink: event capture (GateEventSink)

Usage:
    from tests.fakes import FakeTestRunner, FakeVersionControl

    def test_something():
        vcs = FakeVersionControl()
        vcs.add_commit(...)
"""

from tests.fakes.event_sink import FakeEventSink
from tests.fakes.runner import FakeTestRunner
from tests.fakes.vcs import FakeVersionControl

__all__ = ["FakeEventSink", "FakeTestRunner", "FakeVersionControl"]
