"""
Fake Redis implementation for testing without Redis server
"""
import fnmatch
import time
from typing import Dict, Any, List, Union


class FakeRedis:
    """Fake Redis client for testing"""

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.expirations: Dict[str, float] = {}

    async def get(self, key: str) -> Union[str, None]:
        """Get value by key"""
        if self._is_expired(key):
            return None
        return self.data.get(key)

    async def set(self, key: str, value: Any, ex: int = None, nx: bool = False) -> Union[bool, None]:
        """Set key-value pair; with nx only when the key is absent"""
        if nx and await self.exists(key):
            return None
        self.data[key] = value
        if ex:
            self.expirations[key] = time.time() + ex
        else:
            self.expirations.pop(key, None)
        return True

    async def incr(self, key: str) -> int:
        """Increment an integer value, keeping its expiry"""
        value = int(await self.get(key) or 0) + 1
        self.data[key] = str(value)
        return value

    async def delete(self, *keys: str) -> int:
        """Delete keys"""
        deleted = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.expirations.pop(key, None)
                deleted += 1
        return deleted

    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        if self._is_expired(key):
            return False
        return key in self.data

    async def expire(self, key: str, seconds: int) -> bool:
        """Set expiration for key"""
        if key in self.data:
            self.expirations[key] = time.time() + seconds
            return True
        return False

    async def ttl(self, key: str) -> int:
        """Get time to live for key"""
        if key not in self.data:
            return -2
        if key not in self.expirations:
            return -1
        remaining = self.expirations[key] - time.time()
        return int(remaining) if remaining > 0 else -2

    async def scan_iter(self, match: str = "*"):
        """Iterate keys matching a glob pattern"""
        for key in list(self.data):
            if not self._is_expired(key) and fnmatch.fnmatchcase(key, match):
                yield key

    async def eval(self, script: str, numkeys: int, *args) -> List[int]:
        """Sliding window script: trim, count, add when under the limit"""
        key = args[0]
        window_start, now, max_requests, window = (float(a) for a in args[numkeys:numkeys + 4])

        zset = self.data.setdefault(key, {})
        for member, score in list(zset.items()):
            if score <= window_start:
                del zset[member]

        count = len(zset)
        if count >= max_requests:
            return [0, count]

        zset[f"{now}-{count}"] = now
        self.expirations[key] = time.time() + window
        return [1, count + 1]

    def _is_expired(self, key: str) -> bool:
        """Check if key is expired"""
        if key in self.expirations:
            if time.time() > self.expirations[key]:
                # Clean up expired key
                if key in self.data:
                    del self.data[key]
                del self.expirations[key]
                return True
        return False

    async def ping(self) -> bool:
        return True

    async def close(self):
        pass


def reset_fake_redis():
    """A fresh client per test; rate limit windows and SSO state never leak"""
    return FakeRedis()
