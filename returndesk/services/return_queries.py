"""Read-only listing and reporting over the return store."""

from decimal import Decimal
from typing import Optional

from returndesk.services.return_store import ReturnStore
from returndesk.services.returns import ReturnFilter, ReturnRequest, ReturnStatus


class ReturnQueries:
    """Admin-facing reads. Always served straight from the store."""

    def __init__(self, store: ReturnStore):
        self.store = store

    async def list(self, flt: Optional[ReturnFilter] = None) -> list[ReturnRequest]:
        return await self.store.list(flt or ReturnFilter())

    async def get(self, request_id: str) -> ReturnRequest:
        return await self.store.get(request_id)

    async def stats(self) -> dict:
        """Counts per status (every status present, zero-filled) plus refund total."""
        summary = await self.store.summarize()
        by_status = {s.value: summary.by_status.get(s.value, 0) for s in ReturnStatus}
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "archived": summary.archived,
            "total_refunded": summary.total_refunded.quantize(Decimal("0.01")),
        }
