"""Tests for listing model, normalization and stores."""

from __future__ import annotations

import re
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from realty_listings.api.listings import (
    DynamoListingStore,
    InMemoryListingStore,
    Listing,
    ListingFilter,
    ListingValidationError,
    create_listing_store,
    listing_changes,
    new_listing,
    sort_newest_first,
    utc_now_iso,
)
from realty_listings.config import Config


def make_listing(listing_id: str, updated_at: str, **fields) -> Listing:
    return Listing(
        id=listing_id,
        created_at="2024-01-01T00:00:00.000Z",
        updated_at=updated_at,
        **fields,
    )


class TestNewListing:
    """Tests for new_listing function."""

    def test_defaults(self) -> None:
        """Test absent fields get empty defaults."""
        listing = new_listing({})

        assert listing.id
        assert listing.title == ""
        assert listing.description == ""
        assert listing.price == 0
        assert listing.bedrooms == 0
        assert listing.available is False
        assert listing.tags == []
        assert listing.photos == []
        assert listing.created_at == listing.updated_at

    def test_coerces_values(self) -> None:
        """Test numeric strings and truthy values are normalized."""
        listing = new_listing({
            "title": "Lake house",
            "price": "350000",
            "bedrooms": 3,
            "bathrooms": 2.5,
            "available": "true",
            "tags": ["lake", 7],
            "photos": "not-a-list",
        })

        assert listing.price == 350000
        assert isinstance(listing.price, int)
        assert listing.bathrooms == 2.5
        assert listing.available is True
        assert listing.tags == ["lake", "7"]
        assert listing.photos == []

    def test_ignores_client_id_and_timestamps(self) -> None:
        """Test a client cannot choose the id or timestamps."""
        listing = new_listing({"id": "mine", "createdAt": "1999-01-01"})
        assert listing.id != "mine"
        assert listing.created_at != "1999-01-01"

    @pytest.mark.parametrize(
        "value", ["lots", {"amount": 1}, float("nan"), int("9" * 400), "9" * 400]
    )
    def test_rejects_bad_numbers(self, value: object) -> None:
        """Test non-numeric prices are rejected."""
        with pytest.raises(ListingValidationError) as exc_info:
            new_listing({"price": value})
        assert exc_info.value.field == "price"


class TestListingChanges:
    """Tests for listing_changes function."""

    def test_only_safe_fields(self) -> None:
        """Test unknown keys, id and timestamps are dropped."""
        changes = listing_changes({
            "price": 1000,
            "id": "x",
            "createdAt": "y",
            "owner": "z",
        })
        assert changes == {"price": 1000}

    def test_empty(self) -> None:
        """Test a body without updatable fields."""
        assert listing_changes({"id": "x"}) == {}


class TestWireFormat:
    """Tests for Listing serialization."""

    def test_camel_case_timestamps(self) -> None:
        """Test timestamps use camelCase keys."""
        data = make_listing("a", "2024-02-01T00:00:00.000Z").to_dict()

        assert data["createdAt"] == "2024-01-01T00:00:00.000Z"
        assert data["updatedAt"] == "2024-02-01T00:00:00.000Z"
        assert "created_at" not in data

    def test_timestamp_format(self) -> None:
        """Test new timestamps are UTC with millisecond precision and a Z suffix."""
        stamp = utc_now_iso()

        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", stamp)

    def test_from_dict(self) -> None:
        """Test reading a stored record."""
        listing = Listing.from_dict({
            "id": "a",
            "title": "Flat",
            "price": 900,
            "createdAt": "c",
            "updatedAt": "u",
        })
        assert listing.title == "Flat"
        assert listing.updated_at == "u"


class TestFiltering:
    """Tests for ListingFilter and ordering."""

    def test_from_query(self) -> None:
        """Test query parameters are parsed."""
        listing_filter = ListingFilter.from_query({
            "available": "true",
            "beds": "2",
            "baths": "1.5",
            "maxPrice": "500000",
        })
        assert listing_filter == ListingFilter(True, 2.0, 1.5, 500000.0)

    def test_bad_query_number(self) -> None:
        """Test a non-numeric filter is rejected."""
        with pytest.raises(ListingValidationError) as exc_info:
            ListingFilter.from_query({"beds": "many"})
        assert exc_info.value.field == "beds"

    def test_matches(self) -> None:
        """Test each filter criterion."""
        home = make_listing("a", "u", price=400000, bedrooms=3, bathrooms=2, available=True)

        assert ListingFilter().matches(home)
        assert ListingFilter(available=True, min_bedrooms=3).matches(home)
        assert not ListingFilter(available=False).matches(home)
        assert not ListingFilter(min_bathrooms=3).matches(home)
        assert not ListingFilter(max_price=399999).matches(home)

    def test_newest_first(self) -> None:
        """Test ordering by last update."""
        listings = [
            make_listing("old", "2024-01-01T00:00:00.000Z"),
            make_listing("new", "2024-03-01T00:00:00.000Z"),
            make_listing("mid", "2024-02-01T00:00:00.000Z"),
        ]
        assert [p.id for p in sort_newest_first(listings)] == ["new", "mid", "old"]


class TestInMemoryListingStore:
    """Tests for InMemoryListingStore class."""

    @pytest.mark.asyncio
    async def test_put_get_delete(self) -> None:
        """Test basic persistence."""
        store = InMemoryListingStore()
        listing = make_listing("a", "u")

        await store.put(listing)
        assert await store.get("a") == listing
        assert await store.list_all() == [listing]

        await store.delete("a")
        await store.delete("a")
        assert await store.get("a") is None

    @pytest.mark.asyncio
    async def test_update(self) -> None:
        """Test an update changes fields and the update time only."""
        store = InMemoryListingStore([make_listing("a", "old", title="Before", price=1)])

        updated = await store.update("a", {"title": "After"}, "new")

        assert updated is not None
        assert updated.title == "After"
        assert updated.price == 1
        assert updated.updated_at == "new"
        assert updated.created_at == "2024-01-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_update_missing(self) -> None:
        """Test updating a missing listing does not create it."""
        store = InMemoryListingStore()

        assert await store.update("ghost", {"title": "x"}, "now") is None
        assert await store.list_all() == []


class TestDynamoListingStore:
    """Tests for DynamoListingStore class."""

    @pytest.fixture
    def table(self) -> MagicMock:
        """Mock boto3 Table resource."""
        return MagicMock()

    @pytest.mark.asyncio
    async def test_put_converts_floats(self, table: MagicMock) -> None:
        """Test floats are written as Decimal."""
        store = DynamoListingStore(table)

        await store.put(make_listing("a", "u", bathrooms=1.5, price=100))

        item = table.put_item.call_args.kwargs["Item"]
        assert item["bathrooms"] == Decimal("1.5")
        assert item["price"] == 100
        assert item["updatedAt"] == "u"

    @pytest.mark.asyncio
    async def test_scan_paginates(self, table: MagicMock) -> None:
        """Test every scan page is read."""
        table.scan.side_effect = [
            {"Items": [{"id": "a", "price": Decimal("10")}], "LastEvaluatedKey": {"id": "a"}},
            {"Items": [{"id": "b", "bathrooms": Decimal("1.5")}]},
        ]
        store = DynamoListingStore(table)

        listings = await store.list_all()

        assert [p.id for p in listings] == ["a", "b"]
        assert listings[0].price == 10
        assert isinstance(listings[0].price, int)
        assert listings[1].bathrooms == 1.5
        assert table.scan.call_args_list[1].kwargs == {"ExclusiveStartKey": {"id": "a"}}

    @pytest.mark.asyncio
    async def test_get_missing(self, table: MagicMock) -> None:
        """Test a missing item."""
        table.get_item.return_value = {}
        assert await DynamoListingStore(table).get("a") is None

    @pytest.mark.asyncio
    async def test_update_is_conditional(self, table: MagicMock) -> None:
        """Test the update expression only sets given fields and requires the item."""
        table.update_item.return_value = {
            "Attributes": {"id": "a", "title": "New", "updatedAt": "now"}
        }
        store = DynamoListingStore(table)

        updated = await store.update("a", {"title": "New", "price": 2.5}, "now")

        kwargs = table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"id": "a"}
        assert kwargs["ConditionExpression"] == "attribute_exists(#id)"
        assert kwargs["UpdateExpression"] == (
            "SET #title = :title, #price = :price, #updatedAt = :updatedAt"
        )
        assert kwargs["ExpressionAttributeValues"][":price"] == Decimal("2.5")
        assert updated is not None
        assert updated.title == "New"

    @pytest.mark.asyncio
    async def test_update_missing(self, table: MagicMock) -> None:
        """Test a failed condition means the listing does not exist."""
        table.update_item.side_effect = ClientError(
            {"Error": {"Code": "ConditionalCheckFailedException", "Message": "nope"}},
            "UpdateItem",
        )

        assert await DynamoListingStore(table).update("a", {"title": "x"}, "now") is None

    @pytest.mark.asyncio
    async def test_update_other_errors_propagate(self, table: MagicMock) -> None:
        """Test unrelated client errors are not hidden."""
        table.update_item.side_effect = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow"}},
            "UpdateItem",
        )

        with pytest.raises(ClientError):
            await DynamoListingStore(table).update("a", {"title": "x"}, "now")


class TestCreateListingStore:
    """Tests for create_listing_store function."""

    def test_memory_default(self, default_config: Config) -> None:
        """Test the default backend."""
        assert isinstance(create_listing_store(default_config), InMemoryListingStore)
