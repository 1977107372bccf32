from __future__ import annotations

import ipaddress
import platform
import re
import socket
import subprocess
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import psutil

from pocket_ipam.utils.logging import get_logger

from .errors import ValidationError
from .models import ProbeResult
from .scapy_runtime import prepare_scapy_cache

logger = get_logger(__name__)

METHOD_ICMP = "icmp"
METHOD_ARP = "arp"
SWEEP_METHODS = (METHOD_ICMP, METHOD_ARP)

_RTT_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)


def parse_network(cidr: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    try:
        return ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError as exc:
        raise ValidationError(f"invalid CIDR '{cidr}': {exc}") from exc


def usable_hosts(cidr: str, limit: int = 4096) -> list[str]:
    """Addresses worth probing in ``cidr``.

    IPv4 skips the network and broadcast addresses, IPv6 skips the subnet-router
    anycast address. /31 and /32 (and /127, /128) yield every address.
    """
    network = parse_network(cidr)
    point_to_point = network.prefixlen >= network.max_prefixlen - 1
    if point_to_point:
        count = network.num_addresses
    elif network.version == 4:
        count = network.num_addresses - 2
    else:
        count = network.num_addresses - 1
    if count > limit:
        raise ValidationError(
            f"{network} has {count} usable addresses, more than the sweep limit of {limit}"
        )
    if point_to_point:
        return [str(address) for address in network]
    return [str(address) for address in network.hosts()]


def _ping_command(address: str, timeout: int) -> list[str]:
    system = platform.system().lower()
    version = ipaddress.ip_address(address).version
    if system == "windows":
        return ["ping", "-n", "1", "-w", str(timeout * 1000), address]
    if system == "darwin":
        # macOS takes -W in milliseconds and needs ping6 for IPv6.
        binary = "ping6" if version == 6 else "ping"
        return [binary, "-c", "1", "-W", str(timeout * 1000), address]
    return ["ping", "-c", "1", "-W", str(timeout), address]


def parse_ping_output(output: str) -> tuple[bool, Optional[float]]:
    """Return (answered, rtt_ms) for the output of a single-echo ping."""
    answered = "ttl=" in output.lower()
    match = _RTT_RE.search(output)
    rtt = float(match.group(1)) if match and answered else None
    return answered, rtt


def ping_address(address: str, timeout: int = 1) -> ProbeResult:
    cmd = _ping_command(address, timeout)
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout + 2,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.debug("ping %s timed out", address)
        return ProbeResult(address=address, alive=False)
    except OSError as exc:
        logger.debug("ping %s failed to start: %s", address, exc)
        return ProbeResult(address=address, alive=False)

    answered, rtt = parse_ping_output(proc.stdout)
    alive = proc.returncode == 0 and answered
    return ProbeResult(address=address, alive=alive, rtt_ms=rtt if alive else None)


def interface_for_network(cidr: str) -> str | None:
    """Name of the local interface whose IPv4 network overlaps ``cidr``, if any."""
    target = parse_network(cidr)
    for iface_name, addrs in psutil.net_if_addrs().items():
        if iface_name.startswith("lo"):
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            try:
                local = ipaddress.IPv4Network(f"{addr.address}/{addr.netmask}", strict=False)
            except ValueError:
                continue
            if target.version == 4 and local.overlaps(target):
                return iface_name
    return None


def arp_sweep(cidr: str, timeout: int = 2, iface: str | None = None) -> set[str]:
    """Addresses in ``cidr`` that answered an ARP who-has. Needs raw-socket privileges."""
    network = parse_network(cidr)
    if network.version != 4:
        raise ValidationError("ARP sweeps only work on IPv4 subnets")

    cache_dir = prepare_scapy_cache()
    logger.debug("scapy cache at %s", cache_dir)
    from scapy.all import ARP, Ether, srp  # type: ignore

    iface = iface or interface_for_network(cidr)
    packet = Ether(dst="ff:ff:ff:ff:ff:ff") / ARP(pdst=str(network))
    answered, _ = srp(packet, timeout=timeout, verbose=False, iface=iface)
    return {recv.psrc for _, recv in answered}


def ping_sweep(
    cidr: str,
    method: str = METHOD_ICMP,
    timeout: int = 1,
    workers: int = 64,
    limit: int = 4096,
    iface: str | None = None,
    probe: Callable[[str, int], ProbeResult] = ping_address,
) -> list[ProbeResult]:
    """Probe every usable address of ``cidr`` and return one result per address."""
    if method not in SWEEP_METHODS:
        raise ValidationError(f"unknown sweep method '{method}', expected one of: {', '.join(SWEEP_METHODS)}")

    targets = usable_hosts(cidr, limit=limit)
    if not targets:
        return []
    logger.info("sweeping %s (%d addresses, method=%s)", cidr, len(targets), method)

    if method == METHOD_ARP:
        alive = arp_sweep(cidr, timeout=timeout, iface=iface)
        return [ProbeResult(address=address, alive=address in alive) for address in targets]

    executor = ThreadPoolExecutor(max_workers=max(1, min(workers, len(targets))))
    try:
        results = list(executor.map(lambda address: probe(address, timeout), targets))
    except KeyboardInterrupt:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results
