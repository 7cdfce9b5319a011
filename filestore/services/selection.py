"""
Provider selection strategies.
"""

from __future__ import annotations

import threading
from typing import Sequence, TypeVar, Union

from filestore.core.exceptions import NoHealthyProvidersError, ProviderConfigError
from filestore.core.interfaces.storage import StorageStrategy

T = TypeVar("T")


def parse_strategy(value: Union[str, StorageStrategy]) -> StorageStrategy:
    """
    Resolve a strategy name.

    Raises:
        ProviderConfigError: If the name is not a known strategy
    """
    if isinstance(value, StorageStrategy):
        return value
    try:
        return StorageStrategy(value.lower())
    except ValueError:
        allowed = ", ".join(s.value for s in StorageStrategy)
        raise ProviderConfigError(
            f"Unknown storage strategy: {value}. Allowed: {allowed}"
        ) from None


class ProviderSelector:
    """
    Pick one provider from the healthy, priority-ordered candidates.

    - primary / failover: always the first (highest priority) candidate
    - round_robin / load_balance: rotate through the candidates

    The rotation counter only ever increases, so the pick is
    ``counter % len(candidates)`` even when the healthy set changes size.
    """

    def __init__(self, strategy: Union[str, StorageStrategy] = StorageStrategy.PRIMARY):
        self.strategy = parse_strategy(strategy)
        self._counter = 0
        self._lock = threading.Lock()

    @property
    def rotates(self) -> bool:
        return self.strategy in (StorageStrategy.ROUND_ROBIN, StorageStrategy.LOAD_BALANCE)

    def select(self, candidates: Sequence[T]) -> T:
        """
        Raises:
            NoHealthyProvidersError: If ``candidates`` is empty
        """
        if not candidates:
            raise NoHealthyProvidersError()

        if not self.rotates:
            return candidates[0]

        with self._lock:
            index = self._counter % len(candidates)
            self._counter += 1
        return candidates[index]
