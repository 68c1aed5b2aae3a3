"""Persistence of discovered servers.

The scanner only depends on the ``KeyedStore`` shape: an awaitable
``upsert((ip, port), fields)`` returning the stored record. Records are
never deleted by the scanner.
"""
import copy
import logging
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Protocol

from elasticsearch import ApiError, AsyncElasticsearch, BadRequestError, NotFoundError, TransportError

from mcscan.exceptions import StoreError

logger = logging.getLogger(__name__)

INDEX_MAPPING = {
    "properties": {
        "ip": {"type": "ip"},
        "port": {"type": "integer"},
        "online": {"type": "boolean"},
        "motd": {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}},
        "players": {
            "properties": {
                "online": {"type": "integer"},
                "max": {"type": "integer"},
            }
        },
        "version": {"type": "keyword"},
        "lastScanned": {"type": "date"},
        "createdAt": {"type": "date"},
        "updatedAt": {"type": "date"},
    }
}


class KeyedStore(Protocol):
    async def upsert(self, key, fields) -> dict:
        ...


def utc_now():
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def document_id(key):
    ip, port = key
    return f"{ip}-{port}"


def status_fields(status, now=None):
    """Scan-derived fields written on every successful handshake."""
    return {
        "online": True,
        "motd": status.motd,
        "players": {"online": status.players_online, "max": status.players_max},
        "version": status.version,
        "lastScanned": now or utc_now(),
    }


def format_document(key, fields, now):
    """Full record for a key seen for the first time."""
    ip, port = key
    document = {"ip": ip, "port": port}
    document.update(fields)
    document["createdAt"] = now
    document["updatedAt"] = now
    return document


class ElasticServerStore:
    def __init__(self, client: AsyncElasticsearch, index="minecraft_servers", request_timeout=30):
        self.client = client
        self.index = index
        self.request_timeout = request_timeout

    async def ensure_index(self):
        """Create the index with its mapping on first use."""
        try:
            if await self.client.indices.exists(index=self.index):
                return False
            await self.client.indices.create(index=self.index, mappings=INDEX_MAPPING)
            logger.info("Created index %s", self.index)
            return True
        except BadRequestError as e:
            # another process created it between exists() and create()
            if "resource_already_exists_exception" in str(e):
                return False
            raise StoreError(f"Could not create index {self.index}: {e}") from e
        except (ApiError, TransportError) as e:
            raise StoreError(f"Could not create index {self.index}: {e}") from e

    async def upsert(self, key, fields):
        now = utc_now()
        partial = dict(fields, updatedAt=now)
        try:
            response = await self.client.options(request_timeout=self.request_timeout).update(
                index=self.index,
                id=document_id(key),
                doc=partial,
                upsert=format_document(key, fields, now),
                retry_on_conflict=3,
                source=True,
            )
        except (ApiError, TransportError) as e:
            raise StoreError(f"Upsert of {document_id(key)} failed: {e}") from e
        return response["get"]["_source"]

    async def find_online(self, limit=100):
        try:
            response = await self.client.search(
                index=self.index,
                query={"term": {"online": True}},
                sort=[{"players.online": {"order": "desc"}}],
                size=limit,
            )
        except NotFoundError:
            return []
        except (ApiError, TransportError) as e:
            raise StoreError(f"Search failed: {e}") from e
        return [hit["_source"] for hit in response["hits"]["hits"]]

    async def get_by_ip(self, ip):
        try:
            response = await self.client.search(
                index=self.index,
                query={"term": {"ip": ip}},
                sort=[{"lastScanned": {"order": "desc"}}],
                size=1,
            )
        except NotFoundError:
            return None
        except (ApiError, TransportError) as e:
            raise StoreError(f"Lookup of {ip} failed: {e}") from e
        hits = response["hits"]["hits"]
        return hits[0]["_source"] if hits else None


class MemoryServerStore:
    """In-process store with the same upsert semantics, for tests and dry runs."""

    def __init__(self):
        self._records = {}
        self._lock = threading.Lock()
        self.upsert_calls = 0

    def __len__(self):
        return len(self._records)

    def get(self, key):
        with self._lock:
            record = self._records.get(tuple(key))
            return copy.deepcopy(record) if record else None

    async def upsert(self, key, fields):
        key = tuple(key)
        now = utc_now()
        with self._lock:
            self.upsert_calls += 1
            record = self._records.get(key)
            if record is None:
                record = format_document(key, copy.deepcopy(fields), now)
                self._records[key] = record
            else:
                record.update(copy.deepcopy(fields))
                record["updatedAt"] = now
            return copy.deepcopy(record)

    async def find_online(self, limit=100):
        with self._lock:
            online = [r for r in self._records.values() if r.get("online")]
        online.sort(key=lambda r: r.get("players", {}).get("online", 0), reverse=True)
        return copy.deepcopy(online[:limit])

    async def get_by_ip(self, ip):
        with self._lock:
            matches = [r for r in self._records.values() if r["ip"] == ip]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda r: r.get("lastScanned", "")))


@asynccontextmanager
async def open_store(config):
    """Elasticsearch-backed store for the duration of the block."""
    client = AsyncElasticsearch(list(config.es_hosts))
    try:
        store = ElasticServerStore(client, config.es_index, config.es_request_timeout)
        await store.ensure_index()
        yield store
    finally:
        await client.close()


def memory_store_factory(store):
    """Wrap an existing MemoryServerStore in the ``open_store`` shape."""

    @asynccontextmanager
    async def factory(config):
        yield store

    return factory
