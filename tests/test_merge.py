"""
Tests for the merge engine.
"""
from datetime import datetime, timezone
from decimal import Decimal

from cartsync.merge import merge
from cartsync.models import Cart, LineMetadata, OwnerMode
from tests.factories import line, cart_of

EARLY = datetime(2024, 1, 1, tzinfo=timezone.utc)
LATE = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestMergePolicy:

    def test_disjoint_carts_merge_to_union(self):
        local = cart_of(line("A", 2, "5.00"))
        remote = cart_of(line("B", 3, "8.00"), owner_mode=OwnerMode.AUTHENTICATED)

        result = merge(local, remote)

        assert set(result.lines) == {"A", "B"}
        assert result.lines["A"] == local.lines["A"]
        assert result.lines["B"] == remote.lines["B"]

    def test_shared_product_sums_quantity_and_takes_remote_price(self):
        local = cart_of(line("A", 2, "10.00"))
        remote = cart_of(line("A", 1, "9.00", sale_price=Decimal("8.00")), line("B", 3))

        result = merge(local, remote)

        assert result.lines["A"].quantity == 3
        assert result.lines["A"].unit_price_snapshot == Decimal("9.00")
        assert result.lines["A"].sale_price == Decimal("8.00")
        assert result.lines["B"].quantity == 3

    def test_sum_is_capped_at_max_quantity(self):
        result = merge(cart_of(line("A", 60)), cart_of(line("A", 50)), max_quantity=99)

        assert result.lines["A"].quantity == 99

    def test_sum_is_capped_at_known_stock(self):
        local = cart_of(line("A", 4))
        remote = cart_of(line("A", 3, stock_quantity=5))

        assert merge(local, remote).lines["A"].quantity == 5

    def test_line_with_no_stock_left_is_dropped(self):
        local = cart_of(line("A", 1), line("B", 1))
        remote = cart_of(line("A", 1, stock_quantity=0), line("C", 1))

        assert set(merge(local, remote).lines) == {"B", "C"}

    def test_metadata_remote_wins_with_local_fallback(self):
        local = cart_of(line("A", 1, metadata=LineMetadata(name="Old", image="a.png", sku="SKU-1")))
        remote = cart_of(line("A", 1, metadata=LineMetadata(name="New")))

        metadata = merge(local, remote).lines["A"].metadata

        assert metadata == LineMetadata(name="New", image="a.png", sku="SKU-1")

    def test_result_is_authenticated_with_later_timestamp(self):
        local = cart_of(line("A", 1), last_modified_at=LATE)
        remote = cart_of(line("B", 1), last_modified_at=EARLY, schema_version=0)

        result = merge(local, remote)

        assert result.owner_mode == OwnerMode.AUTHENTICATED
        assert result.last_modified_at == LATE
        assert result.schema_version == 1


class TestMergeEdgeCases:

    def test_empty_remote_yields_local_retagged(self):
        local = cart_of(line("A", 2), last_modified_at=EARLY)

        result = merge(local, Cart.empty(OwnerMode.AUTHENTICATED))

        assert result == local.model_copy(update={"owner_mode": OwnerMode.AUTHENTICATED})

    def test_empty_local_yields_remote(self):
        remote = cart_of(line("B", 3), owner_mode=OwnerMode.AUTHENTICATED, last_modified_at=EARLY)

        assert merge(Cart.empty(), remote) == remote

    def test_merging_a_cart_with_itself_doubles_quantities(self):
        cart = cart_of(line("A", 2), line("B", 1))

        result = merge(cart, cart)

        assert {pid: l.quantity for pid, l in result.lines.items()} == {"A": 4, "B": 2}

    def test_inputs_are_untouched(self):
        local = cart_of(line("A", 2))
        remote = cart_of(line("A", 1))

        merge(local, remote)

        assert local.lines["A"].quantity == 2
        assert remote.lines["A"].quantity == 1
