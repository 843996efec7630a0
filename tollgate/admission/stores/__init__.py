"""Atomic stores for admission procedures.

- RedisScriptStore: Lua scripts, one round trip per admission
- RedisTransactionStore: WATCH/MULTI/EXEC for Redis without scripting
- InMemoryAtomicStore: single process, for tests and local development

Use tollgate.admission.stores.factory.create_store to build one from settings.
"""

from tollgate.admission.stores.base import (
    AtomicStore,
    Procedure,
    ProcedureArgs,
    ProcedureReply,
    ReplyCode,
)
from tollgate.admission.stores.inmemory import InMemoryAtomicStore
from tollgate.admission.stores.redis import RedisScriptStore
from tollgate.admission.stores.transaction import RedisTransactionStore

__all__ = [
    "AtomicStore",
    "InMemoryAtomicStore",
    "Procedure",
    "ProcedureArgs",
    "ProcedureReply",
    "RedisScriptStore",
    "RedisTransactionStore",
    "ReplyCode",
]
