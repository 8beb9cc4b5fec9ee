"""
Utilities for checking availability of host network ports.
"""
import socket
from typing import Optional, Tuple

import psutil


def is_port_free(port: int, protocol: str = "tcp", host: str = "") -> bool:
    """
    Checks if a port can be bound on this host.
    """
    kind = socket.SOCK_DGRAM if protocol == "udp" else socket.SOCK_STREAM
    with socket.socket(socket.AF_INET, kind) as s:
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def port_owner(port: int, protocol: str = "tcp") -> Optional[Tuple[int, str]]:
    """
    Finds the local process bound to a port.

    :return: (pid, process name), or None when no owner is visible to us.
    """
    kind = "udp" if protocol == "udp" else "tcp"
    try:
        connections = psutil.net_connections(kind=kind)
    except psutil.AccessDenied:
        return None

    for conn in connections:
        if not conn.laddr or conn.laddr.port != port or conn.pid is None:
            continue
        if kind == "tcp" and conn.status != psutil.CONN_LISTEN:
            continue
        try:
            return conn.pid, psutil.Process(conn.pid).name()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return conn.pid, ""
    return None
