import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import redis

from assessment_session.config import Config

logger = logging.getLogger(__name__)

_ANSWERS_RE = re.compile(r'"answers"\s*:\s*\{')


def recover_answers(raw: str) -> Optional[dict]:
    """Pulls the ``answers`` object out of a damaged JSON document, if it is intact."""
    match = _ANSWERS_RE.search(raw)
    if not match:
        return None
    try:
        answers, _ = json.JSONDecoder().raw_decode(raw, match.end() - 1)
    except json.JSONDecodeError:
        return None
    return answers if isinstance(answers, dict) else None


class PersistentStore(ABC):
    """Synchronous string key-value store used for all session state."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def keys_with_prefix(self, prefix: str) -> List[str]:
        ...

    def get_json(self, key: str) -> Optional[dict]:
        """Reads and decodes a JSON document.

        A corrupted document is removed. If its ``answers`` object survived,
        ``{"answers": ...}`` is returned so the caller can salvage progress;
        otherwise None.
        """
        raw = self.get(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return data
        except ValueError as e:
            logger.error(f"Corrupted data under {key}: {e}")
            self.remove(key)
            answers = recover_answers(raw)
            if answers is not None:
                logger.info(f"Recovered {len(answers)} answer(s) from corrupted {key}")
                return {"answers": answers}
            return None

    def set_json(self, key: str, data: dict) -> None:
        self.set(key, json.dumps(data))


class MemoryStore(PersistentStore):
    def __init__(self, data: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(data or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)

    def keys_with_prefix(self, prefix):
        return sorted(k for k in self.data if k.startswith(prefix))


class FileStore(PersistentStore):
    """Keeps every key in one JSON file, rewritten on each change."""

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return {str(k): str(v) for k, v in data.items()}
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Could not read store file {self.path}, starting empty: {e}")
            return {}

    def _write(self):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = value
        self._write()

    def remove(self, key):
        if self._data.pop(key, None) is not None:
            self._write()

    def keys_with_prefix(self, prefix):
        return sorted(k for k in self._data if k.startswith(prefix))


class RedisStore(PersistentStore):
    """Redis-backed store. Keys are namespaced and expire after ``ttl`` seconds."""

    def __init__(self, client: "redis.Redis", namespace: str = "", ttl: int = 0):
        self.redis_client = client
        self.namespace = namespace
        self.ttl = ttl

    @classmethod
    def from_url(cls, url: str, namespace: str = "", ttl: int = 0):
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, namespace=namespace, ttl=ttl)

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    def close(self):
        self.redis_client.close()

    def _get_key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _strip(self, key) -> str:
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        if self.namespace:
            return key[len(self.namespace) + 1:]
        return key

    def get(self, key):
        try:
            value = self.redis_client.get(self._get_key(key))
        except redis.RedisError as e:
            logger.error(f"Error reading {key} from Redis: {e}")
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key, value):
        try:
            if self.ttl:
                self.redis_client.setex(self._get_key(key), self.ttl, value)
            else:
                self.redis_client.set(self._get_key(key), value)
        except redis.RedisError as e:
            logger.error(f"Error writing {key} to Redis: {e}")

    def remove(self, key):
        try:
            self.redis_client.delete(self._get_key(key))
        except redis.RedisError as e:
            logger.error(f"Error deleting {key} from Redis: {e}")

    def keys_with_prefix(self, prefix):
        try:
            keys = self.redis_client.scan_iter(match=f"{self._get_key(prefix)}*")
            return sorted(self._strip(k) for k in keys)
        except redis.RedisError as e:
            logger.error(f"Error scanning Redis for {prefix}*: {e}")
            return []


def create_store(backend: Optional[str] = None) -> PersistentStore:
    """Builds the configured store, falling back to memory when Redis is unreachable."""
    backend = backend or Config.STORE_BACKEND
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        return FileStore(Config.STORE_PATH)

    try:
        store = RedisStore.from_url(
            Config.REDIS_URL,
            namespace=Config.STORE_NAMESPACE,
            ttl=Config.STORE_TTL_SECONDS,
        )
        store.ping()
        logger.info("Connected to Redis")
        return store
    except redis.RedisError as e:
        logger.warning(f"Could not connect to Redis, using memory store: {e}")
        return MemoryStore()
