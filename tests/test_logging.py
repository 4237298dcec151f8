from __future__ import annotations

import pytest
import structlog

from hatyai_sos.logging import (
    add_trace_id,
    clear_trace_id,
    configure_logging,
    drop_periodic_logs,
    set_trace_id,
    trace_id_var,
)


@pytest.fixture(autouse=True)
def _reset():
    yield
    configure_logging()
    clear_trace_id()


def test_trace_id_is_injected_when_set() -> None:
    set_trace_id("trace-abc")

    assert trace_id_var.get() == "trace-abc"
    assert add_trace_id(None, "info", {"event": "x"}) == {"event": "x", "trace_id": "trace-abc"}

    clear_trace_id()
    assert add_trace_id(None, "info", {"event": "x"}) == {"event": "x"}


def test_periodic_events_dropped_only_when_suppressed() -> None:
    event = {"event": "sos_cache_refresh_skipped"}

    configure_logging(suppress_periodic_logs=False)
    assert drop_periodic_logs(None, "debug", dict(event)) == event

    configure_logging(suppress_periodic_logs=True)
    with pytest.raises(structlog.DropEvent):
        drop_periodic_logs(None, "debug", dict(event))
    assert drop_periodic_logs(None, "info", {"event": "sos_cache_refreshed"}) == {"event": "sos_cache_refreshed"}
