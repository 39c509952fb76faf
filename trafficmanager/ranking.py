"""Store ranking use case."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


class StoreRankingRepository(Protocol):
    def get_store_ranking(self) -> Any: ...


@dataclass
class StoreRankingService:
    """Serves the store ranking held by a repository."""

    repository: StoreRankingRepository

    def get_store_ranking(self) -> Any:
        """Return the current store ranking; repository errors propagate."""
        return self.repository.get_store_ranking()