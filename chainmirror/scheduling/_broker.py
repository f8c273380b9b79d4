"""Dramatiq broker selection for the refresh actor.

Decorating an actor binds it to the global broker, so
:func:`ensure_broker_configured` runs when :mod:`chainmirror.scheduling.actor`
is imported. A deployment installs its RabbitMQ or Redis broker before that
import; local runs and tests fall back to an in-process ``StubBroker``.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.stub import StubBroker

STUB_BROKER_ENV = "CHAINMIRROR_ALLOW_STUB_BROKER"

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_PYTEST_ENV_VARS = ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER")

_lock = threading.Lock()
_configured: dramatiq.Broker | None = None


def _stub_allowed() -> bool:
    if os.environ.get(STUB_BROKER_ENV, "").strip().lower() in _TRUTHY:
        return True
    return "pytest" in sys.modules or any(var in os.environ for var in _PYTEST_ENV_VARS)


def _current_broker() -> dramatiq.Broker | None:
    try:
        return dramatiq.get_broker()
    except (ImportError, LookupError):
        # get_broker() builds a RabbitMQ broker on first use; pika may be absent.
        return None


def ensure_broker_configured() -> dramatiq.Broker:
    """Return the global broker, installing a stub one when permitted.

    Safe to call from several Dramatiq worker threads at once.

    Raises
    ------
    RuntimeError
        If no broker is available and ``CHAINMIRROR_ALLOW_STUB_BROKER`` is not
        set outside a test run.

    """
    global _configured  # noqa: PLW0603

    if _configured is not None:
        return _configured

    with _lock:
        if _configured is not None:
            return _configured
        broker = _current_broker()
        if broker is None:
            if not _stub_allowed():
                msg = (
                    "No Dramatiq broker configured; install one before importing "
                    f"chainmirror.scheduling.actor or set {STUB_BROKER_ENV}=1"
                )
                raise RuntimeError(msg)
            broker = StubBroker()
            dramatiq.set_broker(broker)
        _configured = broker
        return broker
