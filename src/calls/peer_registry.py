from __future__ import annotations

from collections.abc import Iterable


class PeerRegistry:
    """Latest snapshot of reachable peers, never including the local id."""

    def __init__(self, local_id: str) -> None:
        self._local_id = local_id
        self._peers: tuple[str, ...] = ()

    @property
    def local_id(self) -> str:
        return self._local_id

    def replace(self, ids: Iterable[str]) -> tuple[str, ...]:
        # Keep relay order, drop self and repeats.
        seen: dict[str, None] = {}
        for peer_id in ids:
            if peer_id and peer_id != self._local_id:
                seen.setdefault(peer_id, None)
        self._peers = tuple(seen)
        return self._peers

    def list(self) -> list[str]:
        return list(self._peers)

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)
