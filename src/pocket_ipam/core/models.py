from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Subnet:
    id: str
    cidr: str
    name: str
    parent_id: Optional[str]
    comment: str
    created_at: datetime


@dataclass
class Host:
    id: str
    address: str
    name: str
    parent_id: Optional[str]
    comment: str
    created_at: datetime
    last_seen: Optional[datetime] = None


@dataclass
class Discovery:
    id: str
    address: str
    subnet_id: str
    discovered_at: datetime
    last_seen: datetime
    status: str


@dataclass
class SearchResults:
    subnets: list[Subnet] = field(default_factory=list)
    hosts: list[Host] = field(default_factory=list)
    discoveries: list[Discovery] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.subnets or self.hosts or self.discoveries)


@dataclass
class ProbeResult:
    address: str
    alive: bool
    rtt_ms: Optional[float] = None
