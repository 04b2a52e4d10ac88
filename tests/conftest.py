"""
Pytest configuration and shared fixtures.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from propfeed.core.cache_store import CacheStore
from propfeed.core.config import reset_settings
from propfeed.core.models import Address, Property, PropertyCollection
from propfeed.sources.idealista.transport import FeedFile, FeedTransport, OperationHandle


SAMPLE_XML_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<ads>
  <ad>
    <id>1001</id>
    <externalReference>REF-1001</externalReference>
    <prices>
      <byOperation>
        <SALE><price>250.000 &#8364;</price></SALE>
      </byOperation>
    </prices>
    <property>
      <type>piso</type>
      <address>
        <streetName>Calle Mayor</streetName>
        <postalCode>28013</postalCode>
        <town>Madrid</town>
        <floorNumber>3</floorNumber>
        <coordinates>
          <latitude>40.4168</latitude>
          <longitude>-3.7038</longitude>
        </coordinates>
      </address>
      <housing>
        <roomNumber>3</roomNumber>
        <bathNumber>2</bathNumber>
        <propertyArea>95</propertyArea>
        <hasLift>true</hasLift>
        <hasTerrace>false</hasTerrace>
      </housing>
    </property>
    <comments>
      <adComments>
        <language>0</language>
        <propertyComment>Piso luminoso en el centro</propertyComment>
      </adComments>
      <adComments>
        <language>1</language>
        <propertyComment>Bright flat in the centre</propertyComment>
      </adComments>
    </comments>
    <multimedias>
      <pictures>
        <multimediaPath>https://img.example.com/1001/kitchen.jpg</multimediaPath>
        <position>2</position>
        <multimediaTag>kitchen</multimediaTag>
      </pictures>
      <pictures>
        <multimediaPath>https://img.example.com/1001/facade.jpg</multimediaPath>
        <position>1</position>
      </pictures>
    </multimedias>
  </ad>
  <ad>
    <id>1002</id>
    <prices>
      <byOperation>
        <RENT><price>1.200</price></RENT>
      </byOperation>
    </prices>
    <property>
      <type>oficina</type>
      <address><town>Valencia</town><province>Valencia</province></address>
      <housing><propertyArea>60</propertyArea></housing>
    </property>
  </ad>
  <ad>
    <id>1003</id>
    <prices>
      <byOperation>
        <SALE><price>480000</price></SALE>
      </byOperation>
    </prices>
    <property>
      <address><town>Madrid</town></address>
      <housing><bedroomNumber>4</bedroomNumber><propertyArea>140</propertyArea></housing>
    </property>
  </ad>
  <ad>
    <id>1004</id>
    <property>
      <address><town>Sevilla</town></address>
      <housing><roomNumber>1</roomNumber></housing>
    </property>
  </ad>
</ads>
"""

SAMPLE_JSON_FEED = b"""{
  "properties": [
    {
      "propertyId": "J-1",
      "Title": "Atico con vistas",
      "Price": "\\u20ac 180,000",
      "Operation": "venta",
      "tipo": "atico",
      "location": {"City": "Barcelona", "Province": "Barcelona", "latitude": "41.38", "longitude": "2.17"},
      "rooms": [2],
      "bathrooms": "1",
      "size": "75",
      "images": ["https://img.example.com/j1/a.jpg", {"url": "https://img.example.com/j1/b.jpg"}],
      "description": "Atico reformado",
      "publishedDate": "2024-03-01T10:00:00Z"
    },
    {
      "propertyId": "J-2",
      "price": 950,
      "operation": "alquiler",
      "city": "Madrid",
      "status": "inactivo",
      "modificationDate": 1709287200000
    }
  ]
}
"""


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all app-related env vars to ensure clean state.
    """
    env_vars = [
        "FEED_TRANSPORT",
        "FEED_FTP_HOST",
        "FEED_FTP_PORT",
        "FEED_FTP_USER",
        "FEED_FTP_PASSWORD",
        "FEED_FTP_DIRECTORY",
        "FEED_LOCAL_DIR",
        "FEED_ARCHIVE_DOWNLOADS",
        "FEED_TIMEOUT_SECONDS",
        "FEED_FETCH_ATTEMPTS",
        "FEED_RETRY_BACKOFF_FACTOR",
        "FEED_RETRY_BASE_DELAY",
        "LOOKUP_UPSTREAM_TIMEOUT_SECONDS",
        "FEED_CRON_SCHEDULE",
        "FEED_TIMEZONE",
        "FEED_SCHEDULER_ENABLED",
        "CACHE_TTL_PROPERTIES",
        "CACHE_TTL_IMAGES",
        "PARTNER_API_TOKEN",
        "PARTNER_API_FEED_KEY",
        "LOG_LEVEL",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    # Reset settings singleton
    reset_settings()

    yield

    # Reset again after test
    reset_settings()


@pytest.fixture
def xml_feed_bytes() -> bytes:
    return SAMPLE_XML_FEED


@pytest.fixture
def json_feed_bytes() -> bytes:
    return SAMPLE_JSON_FEED


@pytest.fixture
def cache() -> CacheStore:
    return CacheStore({
        "properties": 1800,
        "images": 3600,
        "campaign-content": 3600,
        "feed-meta": 86400,
    })


def make_property(property_id: str, city: str = "Madrid", **kwargs) -> Property:
    return Property(id=property_id, address=Address(city=city, province=city), **kwargs)


def make_collection(*ids: str, feed_name: str = "feed.xml") -> PropertyCollection:
    return PropertyCollection(
        properties=[make_property(i) for i in ids],
        feed_name=feed_name,
    )


class InMemoryTransport(FeedTransport):
    """Transport over a dict of files, with optional delay and failure."""

    name = "memory"

    def __init__(
        self,
        files: Optional[Dict[str, Tuple[datetime, bytes]]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        timeout_seconds: float = 5.0,
    ):
        super().__init__(timeout_seconds=timeout_seconds)
        self.files = files or {}
        self.delay = delay
        self.error = error
        self.list_calls = 0
        self.aborted = False

    @property
    def location(self) -> str:
        return "memory://"

    def _abort(self, handle: OperationHandle) -> None:
        super()._abort(handle)
        self.aborted = True

    def _wait(self, handle: OperationHandle) -> None:
        deadline = time.monotonic() + self.delay
        while time.monotonic() < deadline and not handle.aborted:
            time.sleep(0.01)

    def _list_files(self, handle: OperationHandle) -> List[FeedFile]:
        self.list_calls += 1
        self._wait(handle)
        if self.error is not None:
            raise self.error
        return [FeedFile(name=name, modified_at=modified) for name, (modified, _) in self.files.items()]

    def _retrieve(self, name: str, handle: OperationHandle) -> bytes:
        if name not in self.files:
            raise FileNotFoundError(name)
        return self.files[name][1]


class StubIngestor:
    """Ingestor returning a fixed collection after a delay, counting calls."""

    def __init__(self, collection: Optional[PropertyCollection] = None, delay: float = 0.0, error: Optional[Exception] = None):
        self.collection = collection or make_collection("A", "B")
        self.delay = delay
        self.error = error
        self.calls = 0

    async def load(self) -> PropertyCollection:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.collection


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
