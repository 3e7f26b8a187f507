"""libvirt helpers for crc: network XML generation and connection handling."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional
from xml.etree.ElementTree import Element, SubElement, tostring

from crc.constants import (
    DEFAULT_DOMAIN_NAME,
    GATEWAY_IP,
    LIBVIRT_BRIDGE_NAME,
    LIBVIRT_NETWORK_MAC,
    LIBVIRT_NETWORK_NAME,
    LIBVIRT_NETWORK_UUID,
    LIBVIRT_URI,
    NODE_IP,
    NODE_MAC,
)
from crc.exceptions import CrcError


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_crc_network_xml(
    name: str = LIBVIRT_NETWORK_NAME,
    node_mac: str = NODE_MAC,
    node_ip: str = NODE_IP,
    domain_name: str = DEFAULT_DOMAIN_NAME,
) -> str:
    """Render the NAT network the cluster VM is attached to in system networking mode."""
    network = Element("network")
    SubElement(network, "name").text = name
    SubElement(network, "uuid").text = LIBVIRT_NETWORK_UUID
    forward = SubElement(network, "forward", mode="nat")
    nat = SubElement(forward, "nat")
    SubElement(nat, "port", start="1024", end="65535")
    SubElement(network, "bridge", name=LIBVIRT_BRIDGE_NAME, stp="on", delay="0")
    SubElement(network, "mac", address=LIBVIRT_NETWORK_MAC)
    ip = SubElement(network, "ip", family="ipv4", address=GATEWAY_IP, prefix="24")
    dhcp = SubElement(ip, "dhcp")
    SubElement(dhcp, "host", mac=node_mac, ip=node_ip, name=domain_name)
    return _element_to_str(network)


@contextmanager
def libvirt_connection(uri: str = LIBVIRT_URI) -> Iterator[Any]:
    """Open a libvirt connection and close it on exit.

    The libvirt bindings are only installed on Linux hosts, so they are
    imported on first use.
    """
    import libvirt

    try:
        conn = libvirt.open(uri)
    except libvirt.libvirtError as exc:
        raise CrcError(f"Failed to connect to libvirt at {uri}: {exc}") from exc
    try:
        yield conn
    finally:
        conn.close()


def lookup_network(conn: Any, name: str = LIBVIRT_NETWORK_NAME) -> Optional[Any]:
    import libvirt

    try:
        return conn.networkLookupByName(name)
    except libvirt.libvirtError:
        return None


def lookup_domain(conn: Any, name: str = DEFAULT_DOMAIN_NAME) -> Optional[Any]:
    import libvirt

    try:
        return conn.lookupByName(name)
    except libvirt.libvirtError:
        return None
