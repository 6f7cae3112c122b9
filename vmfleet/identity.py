"""UUID and MAC address generation for new VMs."""

from __future__ import annotations

import random
import uuid
from typing import Iterable, Optional, Tuple

from vmfleet.constants import MAC_ADDRESS_RE, MAC_PREFIX
from vmfleet.exceptions import InputError
from vmfleet.utils import log

MAX_MAC_ATTEMPTS = 32


def new_uuid() -> str:
    return str(uuid.uuid4())


def random_mac() -> str:
    """Generate a MAC address under the locally-administered qemu prefix."""
    octets = list(MAC_PREFIX)
    octets += [random.randint(0x00, 0xFF) for _ in range(3)]
    return ":".join(f"{octet:02x}" for octet in octets)


def validate_mac(mac: str) -> str:
    normalized = mac.strip().lower().replace("-", ":")
    if not MAC_ADDRESS_RE.match(normalized):
        raise InputError(f"Invalid MAC address '{mac}' (expected xx:xx:xx:xx:xx:xx)")
    return normalized


def generate_identity(mac: Optional[str] = None, taken: Iterable[str] = ()) -> Tuple[str, str]:
    """Return a fresh ``(uuid, mac)`` pair.

    A caller-supplied MAC is validated but kept as-is. A generated MAC is
    redrawn while it collides with ``taken``; with an empty ``taken`` the
    first draw is used unchecked.
    """
    if mac:
        return new_uuid(), validate_mac(mac)

    in_use = {item.lower() for item in taken}
    candidate = random_mac()
    for _ in range(MAX_MAC_ATTEMPTS):
        if candidate not in in_use:
            break
        log("DEBUG", f"Generated MAC {candidate} already in use; drawing another")
        candidate = random_mac()
    else:
        raise InputError(f"Could not find an unused MAC address after {MAX_MAC_ATTEMPTS} attempts")
    return new_uuid(), candidate
