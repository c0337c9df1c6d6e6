"""Shared builders and fakes for the test suite."""

import asyncio

from lazytravel.api.errors import OracleError
from lazytravel.api.models import Stop

PARIS = (48.8566, 2.3522)


def make_stop(stop_id, day=None, city="Paris", travel=None, **fields):
    name = fields.pop("name", f"Place {stop_id}")
    return Stop(
        id=stop_id,
        name=name,
        city=city,
        day_number=day,
        travel_time_next=travel,
        **fields,
    )


def ids(stops):
    return [stop.id for stop in stops]


def north_of(origin, meters):
    """A point roughly ``meters`` due north of ``origin``."""
    return origin[0] + meters / 111_195.0, origin[1]


class GatedEstimator:
    """Travel estimator whose replies are released by the test.

    Each call waits on its own event so tests can resolve calls out of order.
    """

    def __init__(self, label="{a}->{b}"):
        self.label = label
        self.calls = []
        self.gates = []
        self.failures = set()

    async def __call__(self, stops):
        call_number = len(self.calls)
        gate = asyncio.Event()
        self.calls.append([stop.id for stop in stops])
        self.gates.append(gate)
        await gate.wait()
        if call_number in self.failures:
            raise OracleError("estimate service unavailable")
        return [self.label.format(a=a.id, b=b.id) for a, b in zip(stops, stops[1:])]

    def release(self, call_number):
        self.gates[call_number].set()

    async def started(self, count):
        while len(self.calls) < count:
            await asyncio.sleep(0)
