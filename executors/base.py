from abc import ABC, abstractmethod
from asyncio import TimeoutError, wait_for
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from config import PROVIDER_TIMEOUT_SECONDS
from core.errors import ProviderError
from core.intent import Intent
from models.quotes import BalanceSnapshot, Quote

T = TypeVar("T")


@dataclass(frozen=True)
class PreflightResult:
    quote: Optional[Quote] = None
    snapshot: Optional[BalanceSnapshot] = None


class BaseExecutor(ABC):
    """
    Base contract for all preflight executors.
    Executors take an Intent and gather the external data its preview needs.
    No status changes, no persistence, no limiter calls here.
    """

    def __init__(self, timeout: float = PROVIDER_TIMEOUT_SECONDS):
        self.timeout = timeout

    @abstractmethod
    async def execute(self, intent: Intent) -> PreflightResult:
        pass

    async def call(self, provider: str, awaitable: Awaitable[T]) -> T:
        """Bounds one provider call; timeouts and failures become ProviderError."""
        try:
            return await wait_for(awaitable, timeout=self.timeout)
        except TimeoutError:
            raise ProviderError(provider, f"timed out after {self.timeout:g}s")
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(provider, str(e) or e.__class__.__name__) from e
