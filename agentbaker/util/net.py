"""Contains utility functions for network stuff"""

import re

from netaddr import valid_ipv4, valid_ipv6

SUBNET_ID_RE = re.compile(
    r"^/subscriptions/(?P<subscription>[^/]+)"
    r"/resourceGroups/(?P<resource_group>[^/]+)"
    r"/providers/Microsoft\.Network"
    r"/virtualNetworks/(?P<vnet>[^/]+)"
    r"/subnets?/(?P<subnet>[^/]+)$", re.IGNORECASE)


def is_ip(ip):
    """Checks if an IP is a valid IPv4 or IPv6 address"""

    if not isinstance(ip, str) or not ip:
        return False
    return bool(valid_ipv4(ip) or valid_ipv6(ip))


def parse_subnet_id(subnet_id):
    """Split an Azure subnet resource ID into its parts.

    Args:
        subnet_id (str): e.g. ``/subscriptions/<id>/resourceGroups/<rg>/
            providers/Microsoft.Network/virtualNetworks/<vnet>/subnets/<name>``

    Returns:
        A dict with the keys subscription, resource_group, vnet and subnet,
        or None if subnet_id is not a subnet ID.
    """
    match = SUBNET_ID_RE.match(subnet_id or "")
    if not match:
        return None
    return match.groupdict()
