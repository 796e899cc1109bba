"""
Per-tenant lock arena.

Lifecycle operations for one tenant run one at a time inside this process;
different tenants never wait on each other. Across processes the tenant
row's version column catches the same races (ConcurrentModificationError).

Locks are held weakly: an entry lives only while some operation holds or
waits on it, so the arena does not grow with the number of tenants seen.
"""
import asyncio
import uuid
import weakref


class TenantLockArena:
    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, tenant_id: uuid.UUID) -> asyncio.Lock:
        # setdefault is atomic within the event loop thread
        return self._locks.setdefault(str(tenant_id), asyncio.Lock())

    def __len__(self) -> int:
        return len(self._locks)


tenant_locks = TenantLockArena()
