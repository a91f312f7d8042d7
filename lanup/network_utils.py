"""
Network interface detection for lanup.

This module discovers the host's private LAN address: it enumerates the OS
network interfaces, keeps the usable private IPv4 ones, labels each as wifi,
ethernet or virtual, and picks exactly one to expose services on.

**Selection Cycle:**
1. ``InterfaceScanner.scan()`` enumerates interfaces via psutil and filters
   them to active, non-loopback, RFC 1918 IPv4 addresses
2. ``classify_interface()`` labels each interface by its name
3. ``select_interface()`` prefers physical interfaces over virtual ones,
   keeping OS enumeration order as the tie-break

**Security Boundary:**
Only 10.0.0.0/8, 172.16.0.0/12 and 192.168.0.0/16 are ever returned. Public
addresses, IPv6, loopback and interfaces that are down are dropped
unconditionally; there is no setting that relaxes this.

Example:
    ```python
    from lanup.network_utils import detect_local_ip

    candidate = detect_local_ip()
    print(f"{candidate.address} on {candidate.interface_name} ({candidate.interface_class.value})")
    ```

License: MIT
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import psutil

from .errors import NoUsableInterfaceError
from .utils import get_logger


class InterfaceClass(str, Enum):
    """Kind of network interface, derived from its name."""
    WIFI = "wifi"
    ETHERNET = "ethernet"
    VIRTUAL = "virtual"


@dataclass(frozen=True)
class NetworkCandidate:
    """
    One usable address found during a scan.

    Candidates are rebuilt on every scan and never mutated; the watcher keeps
    the selected one only to compare it with the next cycle.

    Attributes:
        address (str): Private IPv4 address, dotted quad.
        interface_name (str): OS interface name (``en0``, ``wlan0``, ``docker0``).
        interface_class (InterfaceClass): wifi, ethernet or virtual.
    """
    address: str
    interface_name: str
    interface_class: InterfaceClass

    @property
    def is_physical(self) -> bool:
        return self.interface_class is not InterfaceClass.VIRTUAL


# RFC 1918 private address ranges, inclusive bounds
PRIVATE_RANGES: Tuple[Tuple[ipaddress.IPv4Address, ipaddress.IPv4Address], ...] = (
    (ipaddress.IPv4Address("10.0.0.0"), ipaddress.IPv4Address("10.255.255.255")),
    (ipaddress.IPv4Address("172.16.0.0"), ipaddress.IPv4Address("172.31.255.255")),
    (ipaddress.IPv4Address("192.168.0.0"), ipaddress.IPv4Address("192.168.255.255")),
)


def is_private_ip(address: str) -> bool:
    """
    Return True when ``address`` is an IPv4 address inside an RFC 1918 range.

    Bounds are exact: ``172.16.0.0`` and ``172.31.255.255`` are private,
    ``172.15.255.255`` and ``172.32.0.0`` are not. Loopback, link-local,
    public addresses, IPv6 and anything that does not parse as a dotted quad
    return False.

    Args:
        address (str): Candidate address string.

    Returns:
        bool: True only for RFC 1918 IPv4 addresses.

    Example:
        ```python
        assert is_private_ip("192.168.1.100")
        assert not is_private_ip("8.8.8.8")
        assert not is_private_ip("not-an-ip")
        ```
    """
    if not isinstance(address, str):
        return False
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False

    for start, end in PRIVATE_RANGES:
        if start <= ip <= end:
            return True
    return False


def _has_prefix(*prefixes: str) -> Callable[[str], bool]:
    return lambda name: name.startswith(prefixes)


def _contains(fragment: str) -> Callable[[str], bool]:
    return lambda name: fragment in name


# Evaluated top to bottom; first match wins. Virtual rules come first so that
# names like "vethXYZ" are never treated as physical.
CLASSIFICATION_RULES: Tuple[Tuple[Callable[[str], bool], InterfaceClass], ...] = (
    (_has_prefix("docker", "veth", "br-", "virbr", "vmnet", "vbox"), InterfaceClass.VIRTUAL),
    (_has_prefix("wlan", "wl", "wifi"), InterfaceClass.WIFI),
    (_contains("wi-fi"), InterfaceClass.WIFI),
    (_has_prefix("eth", "en", "em", "eno", "enp", "ens"), InterfaceClass.ETHERNET),
)


def classify_interface(name: str) -> InterfaceClass:
    """
    Classify an interface name as wifi, ethernet or virtual.

    Matching is case-insensitive. Unknown names default to ethernet: an
    unrecognised adapter is assumed to be wired hardware, never virtual.

    Args:
        name (str): OS interface name.

    Returns:
        InterfaceClass: The classification.

    Example:
        ```python
        classify_interface("WLAN0")     # InterfaceClass.WIFI
        classify_interface("docker0")   # InterfaceClass.VIRTUAL
        classify_interface("utun3")     # InterfaceClass.ETHERNET
        ```
    """
    lowered = name.lower()
    for predicate, interface_class in CLASSIFICATION_RULES:
        if predicate(lowered):
            return interface_class
    return InterfaceClass.ETHERNET


def select_interface(candidates: Sequence[NetworkCandidate]) -> Optional[NetworkCandidate]:
    """
    Pick the single address to expose from a scan result.

    Policy, in order:
    1. the first physical (wifi or ethernet) candidate
    2. the first virtual candidate
    3. None when there are no candidates

    Candidates are never sorted; scan order decides between several physical
    interfaces.

    Args:
        candidates (Sequence[NetworkCandidate]): Scan result in enumeration order.

    Returns:
        Optional[NetworkCandidate]: Selected candidate, or None.
    """
    for candidate in candidates:
        if candidate.is_physical:
            return candidate
    return candidates[0] if candidates else None


class InterfaceScanner:
    """
    Enumerates OS network interfaces and returns usable private IPv4 candidates.

    psutil supplies both the address list (``net_if_addrs``) and the interface
    status (``net_if_stats``). An interface is usable when it is up, is not a
    loopback device, and carries an IPv4 address inside a private range. One
    interface with several private addresses yields several candidates, in the
    order psutil reports them.

    Example:
        ```python
        scanner = InterfaceScanner()
        for candidate in scanner.scan():
            print(candidate.interface_name, candidate.address)
        ```
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or get_logger("lanup.net")

    def scan(self) -> List[NetworkCandidate]:
        """
        Enumerate interfaces and return usable candidates in OS order.

        Returns:
            List[NetworkCandidate]: Possibly empty list of candidates.

        Raises:
            OSError: If the OS interface tables cannot be read.
        """
        try:
            addresses = psutil.net_if_addrs()
            stats = psutil.net_if_stats()
        except psutil.Error as e:
            raise OSError(f"failed to enumerate network interfaces: {e}") from e

        candidates: List[NetworkCandidate] = []
        for name, addrs in addresses.items():
            status = stats.get(name)
            if status is None or not status.isup:
                self.logger.debug(f"Skipping interface {name}: down")
                continue
            if self._is_loopback(name, status):
                self.logger.debug(f"Skipping interface {name}: loopback")
                continue

            interface_class = classify_interface(name)
            for addr in addrs:
                if addr.family != socket.AF_INET:
                    continue
                if not is_private_ip(addr.address):
                    self.logger.debug(f"Skipping {addr.address} on {name}: not a private address")
                    continue
                candidates.append(NetworkCandidate(
                    address=addr.address,
                    interface_name=name,
                    interface_class=interface_class,
                ))

        self.logger.debug(f"Scan found {len(candidates)} usable candidate(s): "
                          f"{[(c.interface_name, c.address) for c in candidates]}")
        return candidates

    @staticmethod
    def _is_loopback(name: str, status) -> bool:
        flags = getattr(status, "flags", "") or ""
        if "loopback" in flags.split(","):
            return True
        return name.lower() in ("lo", "lo0")


def detect_local_ip(scanner: Optional[InterfaceScanner] = None) -> NetworkCandidate:
    """
    Run one selection cycle and return the chosen candidate.

    Args:
        scanner (Optional[InterfaceScanner]): Scanner to use; a default one is
            created when omitted.

    Returns:
        NetworkCandidate: The selected address.

    Raises:
        NoUsableInterfaceError: If enumeration fails or nothing usable is found.
    """
    scanner = scanner or InterfaceScanner()
    try:
        candidates = scanner.scan()
    except OSError as e:
        raise NoUsableInterfaceError("Failed to get network interfaces", cause=e) from e

    if not candidates:
        raise NoUsableInterfaceError("No active network interface with a private IPv4 address found")

    selected = select_interface(candidates)
    scanner.logger.debug(f"Selected {selected.address} on {selected.interface_name} "
                         f"({selected.interface_class.value})")
    return selected
