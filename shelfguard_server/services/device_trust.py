# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Device trust: decide whether a login needs a step-up code.

A device is trusted when it matches a stored trusted device for the account,
either exactly (same fingerprint of IP and user agent) or by the fallback
heuristic: same IPv4 /16 and the same coarse browser and OS family.

The heuristic is approximate. It absorbs ordinary churn (NAT pools, DHCP
leases, browser updates) but is not a cryptographic guarantee; an attacker
on the same /16 using the same browser family on the same OS passes it.
Anything that gates a sensitive action on it should say so.
"""

import hashlib
import logging
from collections.abc import Callable
from datetime import datetime

from user_agents import parse as parse_user_agent

from shelfguard_server.models import TrustedDevice
from shelfguard_server.models.timestamp import utcnow
from shelfguard_server.services.security_store import SecurityStore

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"

# ua-parser family names map onto coarse families by word, first match wins.
# "Chrome Mobile iOS", "Mobile Safari UI/WKWebView", "IE Mobile" and so on.
_BROWSER_FAMILIES: list[tuple[str, frozenset[str]]] = [
    ("edge", frozenset({"edge"})),
    ("opera", frozenset({"opera"})),
    ("ie", frozenset({"ie"})),
    ("firefox", frozenset({"firefox"})),
    ("chrome", frozenset({"chrome", "chromium"})),
    ("safari", frozenset({"safari"})),
]

# "iOS" before "Mac OS X"; distributions count as linux.
_OS_FAMILIES: list[tuple[str, frozenset[str]]] = [
    ("windows", frozenset({"windows"})),
    ("ios", frozenset({"ios"})),
    ("macos", frozenset({"mac"})),
    ("android", frozenset({"android"})),
    ("linux", frozenset({"linux", "ubuntu", "debian", "fedora"})),
]


def fingerprint(ip_address: str, user_agent: str) -> str:
    """One-way digest of IP and user agent, used as an exact-match key."""
    return hashlib.sha256(f"{ip_address}|{user_agent}".encode("utf-8")).hexdigest()


def _family(parsed_family: str, table: list[tuple[str, frozenset[str]]]) -> str:
    words = set(parsed_family.lower().split())
    for family, names in table:
        if words & names:
            return family
    return UNKNOWN


def browser_family(user_agent: str) -> str:
    """chrome, firefox, safari, edge, ie, opera or unknown."""
    return _family(parse_user_agent(user_agent or "").browser.family, _BROWSER_FAMILIES)


def os_family(user_agent: str) -> str:
    """windows, macos, ios, android, linux or unknown."""
    return _family(parse_user_agent(user_agent or "").os.family, _OS_FAMILIES)


def same_network(ip_a: str, ip_b: str) -> bool:
    """Both dotted-quad addresses with equal first two octets (roughly the same /16)."""
    parts_a = (ip_a or "").strip().split(".")
    parts_b = (ip_b or "").strip().split(".")
    if len(parts_a) != 4 or len(parts_b) != 4:
        return False
    return parts_a[:2] == parts_b[:2]


def similar_client(ua_a: str, ua_b: str) -> bool:
    return browser_family(ua_a) == browser_family(ua_b) and os_family(ua_a) == os_family(ua_b)


def device_matches(device: TrustedDevice, ip_address: str, user_agent: str, current_fingerprint: str) -> bool:
    if device.fingerprint == current_fingerprint:
        return True
    return same_network(device.ip_address, ip_address) and similar_client(device.user_agent, user_agent)


class DeviceTrustEvaluator:
    """Decides when step-up verification is needed and records trusted devices."""

    def __init__(self, store: SecurityStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    async def is_verification_needed(self, user_id: int, ip_address: str, user_agent: str) -> bool:
        """True unless the account is federated or the device matches a trusted one.

        Errors resolve to True: when trust cannot be established, challenge.
        """
        try:
            user = await self.store.get_user(user_id)
            if user is not None and user.is_federated:
                await self.trust_device(user_id, ip_address, user_agent)
                logger.info("Federated login for user %s (%s); device trusted", user_id, user.provider)
                return False

            devices = await self.store.list_trusted_devices(user_id)
            current = fingerprint(ip_address, user_agent)
            exact = next((d for d in devices if d.fingerprint == current), None)
            match = exact or next(
                (d for d in devices if device_matches(d, ip_address, user_agent, current)), None
            )
            if match is None:
                return True
            await self.store.touch_trusted_device(match.id, self.clock())
            logger.debug(
                "Device %s trusted for user %s (%s match)",
                match.id, user_id, "exact" if exact else "heuristic",
            )
            return False
        except Exception:
            logger.exception("Could not evaluate device trust for user %s; requiring verification", user_id)
            return True

    async def trust_device(self, user_id: int, ip_address: str, user_agent: str) -> TrustedDevice:
        """Record (or refresh) the device as trusted for the account."""
        return await self.store.upsert_trusted_device(
            user_id,
            ip_address,
            user_agent,
            fingerprint(ip_address, user_agent),
            self.clock(),
        )

    async def list_devices(self, user_id: int) -> list[TrustedDevice]:
        return await self.store.list_trusted_devices(user_id)

    async def revoke_device(self, user_id: int, device_id: int) -> bool:
        removed = await self.store.remove_trusted_device(user_id, device_id)
        if removed:
            logger.info("Revoked trusted device %s for user %s", device_id, user_id)
        return removed
