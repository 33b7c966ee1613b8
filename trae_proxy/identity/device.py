"""Client device identity stamped on every upstream call."""

import random
import threading
from dataclasses import dataclass
from typing import Optional

DEVICE_CPUS = ("AMD", "Intel", "Apple")
DEVICE_BRANDS = ("92L3", "91C9", "814S", "8P15V", "35G4", "65G4", "55G4")

# (device type header, system type, os version) with selection weights
OS_FAMILIES = (
    (("windows", "Windows", "10.0.22631"), 1),
    (("mac", "Darwin", "23.4.0"), 2),
    (("linux", "Linux", "6.5.0-35-generic"), 2),
)

BASE_MAX_USES = 3
MAX_USES_JITTER = 2


@dataclass
class DeviceIdentity:
    """A synthetic IDE installation fingerprint."""

    cpu: str
    device_id: str
    machine_id: str
    brand: str
    device_type: str
    system_type: str
    os_version: str
    max_uses: int
    use_count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.use_count >= self.max_uses

    def snapshot(self) -> "DeviceIdentity":
        """Return a detached copy safe to read outside the rotator lock."""
        return DeviceIdentity(**self.__dict__)


class DeviceRotator:
    """Hand out the current device identity, replacing it when used up.

    With ``rotate=False`` one identity is generated and kept for the life of
    the process; its counter wraps back to zero instead of triggering a
    replacement.
    """

    def __init__(self, rotate: bool = False, rng: Optional[random.Random] = None):
        self.rotate = rotate
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._current: Optional[DeviceIdentity] = None

    def generate(self) -> DeviceIdentity:
        """Build a brand new identity from the random source."""
        rng = self._rng
        families, weights = zip(*OS_FAMILIES)
        device_type, system_type, os_version = rng.choices(families, weights=weights)[0]
        return DeviceIdentity(
            cpu=rng.choice(DEVICE_CPUS),
            device_id=str(rng.getrandbits(63)),
            machine_id=rng.getrandbits(256).to_bytes(32, "big").hex(),
            brand=rng.choice(DEVICE_BRANDS),
            device_type=device_type,
            system_type=system_type,
            os_version=os_version,
            max_uses=BASE_MAX_USES + rng.randint(0, MAX_USES_JITTER),
        )

    def current_identity(self) -> DeviceIdentity:
        """Charge one use against the current identity and return a copy of it."""
        with self._lock:
            if self._current is None:
                self._current = self.generate()
            elif self._current.exhausted:
                if self.rotate:
                    self._current = self.generate()
                else:
                    self._current.use_count = 0
            self._current.use_count += 1
            return self._current.snapshot()

    def peek(self) -> DeviceIdentity:
        """Return the identity the next call will most likely use, uncharged."""
        with self._lock:
            if self._current is None:
                self._current = self.generate()
            return self._current.snapshot()
