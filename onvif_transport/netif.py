"""
Module: netif.py
Purpose: List the local IPv4 addresses discovery probes are sent from.
"""

import ipaddress
import logging
import socket

import psutil

from onvif_transport.errors import NetworkQueryError

logger = logging.getLogger("onvif_transport")


def interface_addresses():
    """
    Return the IPv4 addresses bound to active, non-loopback interfaces.

    :return: A list of dotted-quad strings, ordered by interface name,
        then numerically within one interface.
    :raises NetworkQueryError: If the interface table cannot be read.
    """
    try:
        if_addrs = psutil.net_if_addrs()
        if_stats = psutil.net_if_stats()
    except (OSError, psutil.Error) as exc:
        raise NetworkQueryError(f"cannot read network interfaces: {exc}") from exc

    addresses = []
    for name in sorted(if_addrs):
        stats = if_stats.get(name)
        if stats is not None and not stats.isup:
            logger.debug("Skipping interface %s: down", name)
            continue
        local = []
        for snic in if_addrs[name]:
            if snic.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.ip_address(snic.address)
            except ValueError:
                continue
            if ip.is_loopback:
                continue
            local.append(ip)
        for ip in sorted(local):
            if str(ip) not in addresses:
                addresses.append(str(ip))

    logger.debug("Local IPv4 addresses: %s", addresses)
    return addresses
