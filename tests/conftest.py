import pytest

from fogwalk import (
    PlayerProgress,
    ProgressAccumulator,
    Reconciler,
    RevealEngine,
    SegmentStore,
    StreetGeometry,
    StreetIndex,
)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return SegmentStore()


@pytest.fixture
def s1_street():
    # ~111m along the equator
    return StreetGeometry(id="s1", name="First Street", points=((0.0, 0.0), (0.0, 0.001)),
                          road_type="residential")


@pytest.fixture
def osm_42_street():
    return StreetGeometry(id="osm_42", name="Long Road",
                          points=((0.0, 0.0), (0.0, 0.001), (0.0, 0.002)),
                          road_type="residential")


@pytest.fixture
def index(s1_street):
    idx = StreetIndex()
    idx.load([s1_street])
    return idx


@pytest.fixture
def progress():
    return ProgressAccumulator(PlayerProgress())


@pytest.fixture
def engine(index, store, progress, clock):
    return RevealEngine(index, store, progress=progress, clock=clock)


@pytest.fixture
def reconciler(store, clock):
    return Reconciler(store, clock=clock)
