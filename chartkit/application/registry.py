from typing import Dict, Iterator, List, Tuple

from chartkit.domain.entities import ChartSource
from chartkit.domain.errors import ChartKitError
from chartkit.domain.ports import ChartClient


class ClientRegistry:
    """Maps chart sources to client instances.

    Owned by a ChartHub and passed explicitly to whatever needs it; there is
    no module-level registry.
    """

    def __init__(self):
        self._clients: Dict[ChartSource, ChartClient] = {}

    def add(self, source: ChartSource, client: ChartClient) -> None:
        self._clients[source] = client

    def remove(self, source: ChartSource) -> None:
        self._clients.pop(source, None)

    def get(self, source: ChartSource) -> ChartClient:
        client = self._clients.get(source)
        if client is None:
            raise ChartKitError(f"No client available for source: {source}", "NO_CLIENT", source)
        return client

    def sources(self) -> List[ChartSource]:
        return list(self._clients)

    def items(self) -> List[Tuple[ChartSource, ChartClient]]:
        return list(self._clients.items())

    def __contains__(self, source: object) -> bool:
        return source in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    def __iter__(self) -> Iterator[ChartSource]:
        return iter(list(self._clients))
