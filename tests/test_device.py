"""Tests for the device identity rotator."""
import random

from trae_proxy.identity.device import (
    BASE_MAX_USES,
    MAX_USES_JITTER,
    DeviceRotator,
)


def test_generated_identity_is_plausible():
    identity = DeviceRotator(rng=random.Random(1)).generate()

    assert identity.cpu in ("AMD", "Intel", "Apple")
    assert identity.device_id.isdigit()
    assert len(identity.machine_id) == 64
    assert (identity.device_type, identity.system_type) in (
        ("windows", "Windows"),
        ("mac", "Darwin"),
        ("linux", "Linux"),
    )
    assert BASE_MAX_USES <= identity.max_uses <= BASE_MAX_USES + MAX_USES_JITTER
    assert identity.use_count == 0


def test_counter_never_exceeds_limit():
    rotator = DeviceRotator(rotate=True, rng=random.Random(7))
    for _ in range(50):
        identity = rotator.current_identity()
        assert 1 <= identity.use_count <= identity.max_uses


def test_rotation_replaces_exhausted_identity():
    rotator = DeviceRotator(rotate=True, rng=random.Random(3))
    first = rotator.current_identity()
    for _ in range(first.max_uses - 1):
        assert rotator.current_identity().machine_id == first.machine_id

    fresh = rotator.current_identity()
    assert fresh.machine_id != first.machine_id
    assert fresh.use_count == 1


def test_without_rotation_identity_is_kept():
    rotator = DeviceRotator(rotate=False, rng=random.Random(3))
    first = rotator.current_identity()
    for _ in range(first.max_uses - 1):
        rotator.current_identity()

    again = rotator.current_identity()
    assert again.machine_id == first.machine_id
    assert again.use_count == 1


def test_peek_does_not_charge():
    rotator = DeviceRotator(rng=random.Random(5))
    peeked = rotator.peek()
    assert peeked.use_count == 0
    assert rotator.current_identity().machine_id == peeked.machine_id
    assert rotator.peek().use_count == 1


def test_returned_identity_is_a_copy():
    rotator = DeviceRotator(rng=random.Random(5))
    identity = rotator.current_identity()
    identity.use_count = 99
    assert rotator.peek().use_count == 1
