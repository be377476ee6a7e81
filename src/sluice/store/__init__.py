from sluice.config import MemoryStorageConfig, RedisStorageConfig
from sluice.low.func import assert_never
from sluice.store.api import RunStore
from sluice.store.memory import MemoryStore
from sluice.store.redis_store import RedisStore


def build_store(config: MemoryStorageConfig | RedisStorageConfig) -> RunStore:
    if isinstance(config, MemoryStorageConfig):
        return MemoryStore()
    elif isinstance(config, RedisStorageConfig):
        return RedisStore.from_url(config.url, config.prefix)
    else:
        assert_never(config)
