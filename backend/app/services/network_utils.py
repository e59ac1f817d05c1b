"""Network utility functions for interface detection and address ranges."""

import asyncio
import ipaddress
import logging
import socket
import struct

logger = logging.getLogger(__name__)

# Interfaces to exclude from selection
EXCLUDED_INTERFACE_PREFIXES = ("lo", "docker", "br-", "veth", "virbr")

ENDPOINT_SCHEME = "tcp"


def _is_excluded(name: str) -> bool:
    """Check if an interface name should be excluded."""
    return any(name.startswith(prefix) for prefix in EXCLUDED_INTERFACE_PREFIXES)


def get_network_interfaces() -> list[dict]:
    """Get all network interfaces with their IPs and subnets.

    Returns:
        List of dicts with name, ip, netmask, subnet
    """
    interfaces = []

    try:
        import fcntl

        for iface in socket.if_nameindex():
            name = iface[1]

            # Skip excluded interfaces
            if _is_excluded(name):
                continue

            try:
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
                    # Get IP address
                    ip_bytes = fcntl.ioctl(
                        s.fileno(),
                        0x8915,  # SIOCGIFADDR
                        struct.pack("256s", name[:15].encode()),
                    )[20:24]
                    ip = socket.inet_ntoa(ip_bytes)

                    # Get netmask
                    netmask_bytes = fcntl.ioctl(
                        s.fileno(),
                        0x891B,  # SIOCGIFNETMASK
                        struct.pack("256s", name[:15].encode()),
                    )[20:24]
                    netmask = socket.inet_ntoa(netmask_bytes)

                network = ipaddress.IPv4Network(f"{ip}/{netmask}", strict=False)

                interfaces.append(
                    {
                        "name": name,
                        "ip": ip,
                        "netmask": netmask,
                        "subnet": str(network),
                    }
                )
            except OSError:
                # Interface doesn't have an IP
                pass
            except Exception as e:
                logger.debug("Error getting info for interface %s: %s", name, e)

    except ImportError:
        # fcntl not available (Windows)
        logger.warning("fcntl not available, interface detection limited")
    except Exception as e:
        logger.error("Error enumerating interfaces: %s", e)

    return interfaces


def get_local_subnet(fallback: str = "192.168.1.0/24") -> str:
    """Return the /24 around the first usable IPv4 interface.

    Thermal printers almost always sit on the same flat LAN as the POS host,
    so a /24 is assumed even when the interface netmask is wider.
    """
    for iface in get_network_interfaces():
        try:
            ip = ipaddress.IPv4Address(iface["ip"])
        except ValueError:
            continue
        if ip.is_loopback or ip.is_link_local:
            continue
        return str(ipaddress.IPv4Network(f"{ip}/24", strict=False))

    logger.info("No usable network interface found, falling back to %s", fallback)
    return fallback


def expand_hosts(address_range: str, max_hosts: int = 254) -> list[str]:
    """List host addresses in a CIDR range, without network and broadcast.

    A bare address is treated as a single host.

    Raises:
        ValueError: if the range is not a valid IPv4 network.
    """
    network = ipaddress.IPv4Network(address_range, strict=False)
    if network.num_addresses == 1:
        return [str(network.network_address)]

    hosts = []
    for host in network.hosts():
        hosts.append(str(host))
        if len(hosts) >= max_hosts:
            break
    return hosts


async def probe_tcp(host: str, port: int, timeout: float) -> bool:
    """Attempt a raw TCP connection, bounded by timeout.

    Refused connections and timeouts are ordinary answers here, not errors.
    """
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (TimeoutError, OSError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def reverse_lookup(ip: str, timeout: float = 1.0) -> str | None:
    """Resolve a host name for an address, or None."""
    loop = asyncio.get_running_loop()
    try:
        host, _, _ = await asyncio.wait_for(loop.run_in_executor(None, socket.gethostbyaddr, ip), timeout=timeout)
    except (TimeoutError, OSError):
        return None
    return host if host != ip else None


def make_endpoint(ip: str, port: int) -> str:
    """Build the unique key for a printer endpoint."""
    return f"{ENDPOINT_SCHEME}://{ip}:{port}"


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Split "tcp://host:port" into host and port.

    Raises:
        ValueError: if the endpoint is malformed.
    """
    prefix = f"{ENDPOINT_SCHEME}://"
    if not endpoint.startswith(prefix):
        raise ValueError(f"Unsupported printer endpoint: {endpoint}")
    host, sep, port = endpoint[len(prefix) :].rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Malformed printer endpoint: {endpoint}")
    return host, int(port)
