"""Best-effort discovery of the device's own network attachment."""

import shutil
import socket
import subprocess
from typing import Optional

from .models import DeviceNetwork
from .normalize import is_usable_device_ip

# Never contacted: connecting a UDP socket only selects the outbound interface
_ROUTE_PROBE_ADDR = ("8.8.8.8", 80)


def get_device_ip() -> Optional[str]:
    """Return the LAN IPv4 address of the default-route interface, if any."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(_ROUTE_PROBE_ADDR)
            ip = s.getsockname()[0]
            if is_usable_device_ip(ip):
                return ip
    except OSError:
        pass

    try:
        ip = socket.gethostbyname(socket.gethostname())
        if is_usable_device_ip(ip):
            return ip
    except OSError:
        pass
    return None


def get_wifi_name() -> Optional[str]:
    """SSID of the connected Wi-Fi network, via ``iwgetid`` where available."""
    iwgetid = shutil.which("iwgetid")
    if iwgetid is None:
        return None
    try:
        result = subprocess.run(
            [iwgetid, "-r"], capture_output=True, text=True, timeout=2
        )
    except (OSError, subprocess.SubprocessError):
        return None
    name = result.stdout.strip().strip('"')
    return name or None


def detect_device_network() -> DeviceNetwork:
    ip = get_device_ip()
    wifi_name = get_wifi_name()
    transport = "wifi" if wifi_name else "unknown"
    return DeviceNetwork(transport=transport, ip=ip, wifi_name=wifi_name, connected=ip is not None)
