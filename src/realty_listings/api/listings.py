"""Property listings: wire model, input normalization and storage.

Listings travel as JSON objects with camelCase timestamps::

    {"id": "...", "title": "...", "description": "...", "price": 350000,
     "bedrooms": 3, "bathrooms": 2, "available": true,
     "tags": ["garden"], "photos": ["https://..."],
     "createdAt": "2024-05-01T12:00:00+00:00", "updatedAt": "..."}
"""

from __future__ import annotations

import asyncio
import dataclasses
import math
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from realty_listings.logging_config import get_logger

if TYPE_CHECKING:
    from realty_listings.config import Config

logger = get_logger(__name__)

# Fields a client may set on create or update
SAFE_FIELDS = (
    "title",
    "description",
    "price",
    "bedrooms",
    "bathrooms",
    "available",
    "tags",
    "photos",
)


class ListingValidationError(ValueError):
    """A request field has an unusable type or value.

    Attributes:
        field: Name of the offending field
    """

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Invalid value for {field}")
        self.field = field


def utc_now_iso() -> str:
    """UTC time as ``2024-05-01T12:00:00.123Z``, the format stored rows already use."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _number(name: str, value: Any) -> int | float:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        # Kept exact, but must still be representable as a float
        try:
            float(value)
        except OverflowError:
            raise ListingValidationError(name) from None
        return value
    if isinstance(value, str):
        value = value.strip()
        try:
            exact = int(value)
        except ValueError:
            pass
        else:
            return _number(name, exact)
    elif not isinstance(value, (float, Decimal)):
        raise ListingValidationError(name)

    try:
        number = float(value)
    except (ValueError, OverflowError):
        raise ListingValidationError(name) from None

    if not math.isfinite(number):
        raise ListingValidationError(name)
    return int(number) if number.is_integer() else number


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item is not None]


_COERCERS = {
    "title": lambda v: _text(v),
    "description": lambda v: _text(v),
    "price": lambda v: _number("price", v),
    "bedrooms": lambda v: _number("bedrooms", v),
    "bathrooms": lambda v: _number("bathrooms", v),
    "available": _flag,
    "tags": _string_list,
    "photos": _string_list,
}


@dataclass
class Listing:
    """A property listing."""

    id: str
    title: str = ""
    description: str = ""
    price: int | float = 0
    bedrooms: int | float = 0
    bathrooms: int | float = 0
    available: bool = False
    tags: list[str] = field(default_factory=list)
    photos: list[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "available": self.available,
            "tags": list(self.tags),
            "photos": list(self.photos),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Listing:
        values = {name: _COERCERS[name](data.get(name)) for name in SAFE_FIELDS}
        return cls(
            id=str(data["id"]),
            created_at=_text(data.get("createdAt")),
            updated_at=_text(data.get("updatedAt")),
            **values,
        )


def new_listing(body: Mapping[str, Any]) -> Listing:
    """Create a listing from a request body.

    Absent fields take defaults: empty strings, zero numbers, not
    available, empty lists. A fresh id and timestamps are assigned.

    Raises:
        ListingValidationError: If a numeric field is not a number
    """
    now = utc_now_iso()
    values = {name: _COERCERS[name](body.get(name)) for name in SAFE_FIELDS}
    return Listing(id=str(uuid.uuid4()), created_at=now, updated_at=now, **values)


def listing_changes(body: Mapping[str, Any]) -> dict[str, Any]:
    """Normalize the updatable fields present in a request body.

    Unknown keys, ``id`` and timestamps are ignored.

    Raises:
        ListingValidationError: If a numeric field is not a number
    """
    return {name: _COERCERS[name](body[name]) for name in SAFE_FIELDS if name in body}


def _parse_optional_number(params: Mapping[str, str], key: str) -> float | None:
    raw = params.get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (ValueError, OverflowError):
        raise ListingValidationError(key) from None


@dataclass(frozen=True)
class ListingFilter:
    """Public browsing filters for the listing index."""

    available: bool | None = None
    min_bedrooms: float | None = None
    min_bathrooms: float | None = None
    max_price: float | None = None

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> ListingFilter:
        """Build from ``available``, ``beds``, ``baths`` and ``maxPrice`` query params.

        Raises:
            ListingValidationError: If a numeric parameter is not a number
        """
        available_raw = params.get("available")
        return cls(
            available=_flag(available_raw) if available_raw not in (None, "") else None,
            min_bedrooms=_parse_optional_number(params, "beds"),
            min_bathrooms=_parse_optional_number(params, "baths"),
            max_price=_parse_optional_number(params, "maxPrice"),
        )

    def matches(self, listing: Listing) -> bool:
        if self.available is not None and listing.available != self.available:
            return False
        if self.min_bedrooms is not None and listing.bedrooms < self.min_bedrooms:
            return False
        if self.min_bathrooms is not None and listing.bathrooms < self.min_bathrooms:
            return False
        return self.max_price is None or listing.price <= self.max_price


def sort_newest_first(listings: Iterable[Listing]) -> list[Listing]:
    """Order by last update (falling back to creation), newest first."""
    return sorted(listings, key=lambda p: p.updated_at or p.created_at, reverse=True)


class ListingStore(ABC):
    """Persistence for listings, keyed by id."""

    @abstractmethod
    async def list_all(self) -> list[Listing]:
        """Return every listing, in no particular order."""

    @abstractmethod
    async def get(self, listing_id: str) -> Listing | None:
        """Return one listing or None."""

    @abstractmethod
    async def put(self, listing: Listing) -> None:
        """Insert or replace a listing."""

    @abstractmethod
    async def update(
        self, listing_id: str, changes: Mapping[str, Any], updated_at: str
    ) -> Listing | None:
        """Apply field changes and bump ``updatedAt``.

        Returns:
            The updated listing, or None if it does not exist
        """

    @abstractmethod
    async def delete(self, listing_id: str) -> None:
        """Delete a listing; deleting a missing id is not an error."""


class InMemoryListingStore(ListingStore):
    """Process-local listing store for development and tests."""

    def __init__(self, listings: Iterable[Listing] = ()) -> None:
        self._listings: dict[str, Listing] = {p.id: p for p in listings}
        self._lock = asyncio.Lock()

    async def list_all(self) -> list[Listing]:
        async with self._lock:
            return list(self._listings.values())

    async def get(self, listing_id: str) -> Listing | None:
        async with self._lock:
            return self._listings.get(listing_id)

    async def put(self, listing: Listing) -> None:
        async with self._lock:
            self._listings[listing.id] = listing

    async def update(
        self, listing_id: str, changes: Mapping[str, Any], updated_at: str
    ) -> Listing | None:
        async with self._lock:
            current = self._listings.get(listing_id)
            if current is None:
                return None
            updated = dataclasses.replace(current, **dict(changes), updated_at=updated_at)
            self._listings[listing_id] = updated
            return updated

    async def delete(self, listing_id: str) -> None:
        async with self._lock:
            self._listings.pop(listing_id, None)


def _to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal, as the DynamoDB resource API requires."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, list):
        return [_to_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    return value


class DynamoListingStore(ListingStore):
    """Listing store backed by a DynamoDB table with partition key ``id``.

    boto3 is synchronous, so each call runs in a worker thread.
    """

    def __init__(self, table: Any) -> None:
        """Initialize with a boto3 ``Table`` resource."""
        self._table = table

    @classmethod
    def from_config(cls, config: Config) -> DynamoListingStore:
        import boto3

        resource = boto3.resource("dynamodb", region_name=config.region)
        logger.info("Using DynamoDB table %s in %s", config.listings_table, config.region)
        return cls(resource.Table(config.listings_table))

    def _scan(self) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {}
        while True:
            page = self._table.scan(**kwargs)
            items.extend(page.get("Items", []))
            last_key = page.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    async def list_all(self) -> list[Listing]:
        items = await asyncio.to_thread(self._scan)
        return [Listing.from_dict(_from_dynamo(item)) for item in items]

    async def get(self, listing_id: str) -> Listing | None:
        response = await asyncio.to_thread(self._table.get_item, Key={"id": listing_id})
        item = response.get("Item")
        return Listing.from_dict(_from_dynamo(item)) if item else None

    async def put(self, listing: Listing) -> None:
        await asyncio.to_thread(self._table.put_item, Item=_to_dynamo(listing.to_dict()))

    async def update(
        self, listing_id: str, changes: Mapping[str, Any], updated_at: str
    ) -> Listing | None:
        names = {"#id": "id", "#updatedAt": "updatedAt"}
        values: dict[str, Any] = {":updatedAt": updated_at}
        assignments = []
        for name, value in changes.items():
            names[f"#{name}"] = name
            values[f":{name}"] = _to_dynamo(value)
            assignments.append(f"#{name} = :{name}")
        assignments.append("#updatedAt = :updatedAt")

        try:
            response = await asyncio.to_thread(
                self._table.update_item,
                Key={"id": listing_id},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                return None
            raise

        return Listing.from_dict(_from_dynamo(response["Attributes"]))

    async def delete(self, listing_id: str) -> None:
        await asyncio.to_thread(self._table.delete_item, Key={"id": listing_id})


def create_listing_store(config: Config) -> ListingStore:
    """Build the configured listing store."""
    from realty_listings.config import ListingsBackend

    if config.listings_backend == ListingsBackend.DYNAMODB:
        return DynamoListingStore.from_config(config)
    logger.warning("Using in-memory listing store; listings are lost on restart")
    return InMemoryListingStore()
