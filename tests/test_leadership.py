import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from rabbitmqclusters.operator.leadership import MICRO_TIME_FORMAT, LeaseElector
from tests.helpers import NAMESPACE, FakeKube, api_exception

LEASE = "rabbitmq-cluster-operator"


def _stamp(delta_seconds: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=delta_seconds)).strftime(
        MICRO_TIME_FORMAT
    )


def _existing_lease(kube: FakeKube, holder: str, renewed_seconds_ago: float, duration: int = 15):
    kube._create(
        "Lease",
        NAMESPACE,
        {
            "metadata": {"name": LEASE},
            "spec": {
                "holderIdentity": holder,
                "leaseDurationSeconds": duration,
                "renewTime": _stamp(-renewed_seconds_ago),
                "leaseTransitions": 0,
            },
        },
    )


def _elector(kube: FakeKube, identity: str = "me", **kwargs) -> LeaseElector:
    return LeaseElector(LEASE, NAMESPACE, identity=identity, api=kube, **kwargs)


def _spec(kube):
    return kube.get("Lease", NAMESPACE, LEASE)["spec"]


@pytest.mark.asyncio
async def test_creates_missing_lease():
    kube = FakeKube()
    elector = _elector(kube, lease_duration=20)

    assert await elector.try_acquire_or_renew() is True

    spec = _spec(kube)
    assert spec["holderIdentity"] == "me"
    assert spec["leaseDurationSeconds"] == 20
    assert "renewTime" in spec and "acquireTime" in spec


@pytest.mark.asyncio
async def test_respects_a_live_lease_held_by_someone_else():
    kube = FakeKube()
    _existing_lease(kube, "other", renewed_seconds_ago=1)

    elector = _elector(kube)

    assert await elector.try_acquire_or_renew() is False
    assert elector.observed_holder == "other"
    assert _spec(kube)["holderIdentity"] == "other"


@pytest.mark.asyncio
async def test_takes_over_an_expired_lease():
    kube = FakeKube()
    _existing_lease(kube, "other", renewed_seconds_ago=60)

    assert await _elector(kube).try_acquire_or_renew() is True

    spec = _spec(kube)
    assert spec["holderIdentity"] == "me"
    assert spec["leaseTransitions"] == 1


@pytest.mark.asyncio
async def test_renewal_keeps_acquire_time():
    kube = FakeKube()
    elector = _elector(kube)
    await elector.try_acquire_or_renew()
    acquired = _spec(kube)["acquireTime"]

    await asyncio.sleep(0.01)
    assert await elector.try_acquire_or_renew() is True

    spec = _spec(kube)
    assert spec["acquireTime"] == acquired
    assert spec["leaseTransitions"] == 0


@pytest.mark.asyncio
async def test_write_conflict_means_not_acquired():
    kube = FakeKube()
    _existing_lease(kube, "other", renewed_seconds_ago=60)
    kube.fail("replace_namespaced_lease", api_exception(409, "Conflict"))

    assert await _elector(kube).try_acquire_or_renew() is False


@pytest.mark.asyncio
async def test_release_clears_the_holder():
    kube = FakeKube()
    elector = _elector(kube, renew_interval=0.01)
    await elector.acquire()
    assert elector.is_leader

    await elector.release()

    spec = _spec(kube)
    assert spec["holderIdentity"] is None
    assert spec["leaseDurationSeconds"] == 1
    assert not elector.is_leader
    assert await _elector(kube, identity="next").try_acquire_or_renew() is True


@pytest.mark.asyncio
async def test_release_does_nothing_when_not_leading():
    kube = FakeKube()
    _existing_lease(kube, "other", renewed_seconds_ago=1)

    await _elector(kube).release()

    assert _spec(kube)["holderIdentity"] == "other"


@pytest.mark.asyncio
async def test_hold_returns_when_another_replica_takes_the_lease():
    kube = FakeKube()
    elector = _elector(kube, renew_interval=0.01, lease_duration=3600)
    await elector.acquire()

    def steal(lease):
        lease["spec"]["holderIdentity"] = "other"
        lease["spec"]["renewTime"] = _stamp(0)

    kube.mutate("Lease", NAMESPACE, LEASE, steal)

    await asyncio.wait_for(elector.hold(), timeout=1)
    assert not elector.is_leader


@pytest.mark.asyncio
async def test_hold_survives_a_transient_renewal_failure():
    kube = FakeKube()
    elector = _elector(kube, renew_interval=0.01, lease_duration=3600)
    await elector.acquire()
    kube.fail("read_namespaced_lease", api_exception(503))

    hold = asyncio.create_task(elector.hold())
    await asyncio.sleep(0.05)

    assert not hold.done()
    assert elector.is_leader
    hold.cancel()
    await asyncio.gather(hold, return_exceptions=True)
