from typing import Iterable, List, Sequence
from .types import PortRange


def consolidate_port_ranges(ports: Iterable[int]) -> List[PortRange]:
    """
    Collapse a set of ports into the fewest contiguous ranges.

    Duplicates are ignored and adjacent ports merge, so [80, 81, 82, 443]
    becomes [80-82, 443-443]. Input order does not matter.
    """
    ranges: List[PortRange] = []
    for port in sorted(set(ports)):
        if ranges and port == ranges[-1].to_port + 1:
            ranges[-1] = PortRange(ranges[-1].from_port, port)
        else:
            ranges.append(PortRange(port, port))
    return ranges


def ports_of(ranges: Iterable[PortRange]) -> List[int]:
    ports = []
    for pr in ranges:
        ports.extend(range(pr.from_port, pr.to_port + 1))
    return ports


def is_port_in_ranges(port: int, ranges: Sequence[PortRange]) -> bool:
    for pr in ranges:
        if pr.from_port <= port <= pr.to_port:
            return True
    return False
