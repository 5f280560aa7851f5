# Order history / detail / cancel / buy-again tests

import threading

import pytest

from storefront.domain.errors import ActionNotAllowedError, AuthExpiredError, NetworkError
from storefront.domain.schemas import CanonicalStatus, Order
from storefront.services.order_service import OrderService, reorder_result

from tests.conftest import wire_line, wire_order, wire_page


@pytest.fixture
def service(client):
    return OrderService(client)


class TestHistory:

    async def test_first_page_alone_then_rest_in_parallel(self, client, service):
        # both remaining pages must be in flight together to pass the barrier
        barrier = threading.Barrier(2, timeout=5)

        def concurrent(page):
            barrier.wait()
            return {2: wire_page([wire_order(7)], 3), 3: wire_page([wire_order(5), wire_order(2)], 3)}[page]

        client.pages = {1: wire_page([wire_order(3), wire_order(1)], 3), 2: concurrent, 3: concurrent}

        history = await service.fetch_history()

        assert client.calls[0] == ("list_orders", 1)
        assert sorted(c[1] for c in client.calls[1:]) == [2, 3]
        assert [o.id for o in history.orders] == [7, 5, 3, 2, 1]
        assert history.last_page == 3
        assert history.errors == []

    async def test_failed_page_is_skipped(self, client, service):
        client.pages = {
            1: wire_page([wire_order(9)], 3),
            2: NetworkError("boom", status_code=500),
            3: wire_page([wire_order(4)], 3),
        }

        history = await service.fetch_history()

        assert [o.id for o in history.orders] == [9, 4]
        assert history.failed_pages == [2]

    async def test_expired_session_stops_the_listing(self, client, service):
        client.pages = {1: wire_page([wire_order(9)], 2), 2: AuthExpiredError()}
        with pytest.raises(AuthExpiredError):
            await service.fetch_history()

    async def test_grouped_shape_is_flattened_and_deduplicated(self, client, service):
        client.pages = {
            1: {
                "data": [
                    {"trangthai": "Chờ xử lý", "donhang": [wire_order(1), wire_order(2)]},
                    {"trangthai": "Đã hủy", "donhang": [wire_order(2), wire_order(3, status="Đã hủy")]},
                ]
            }
        }

        history = await service.fetch_history()

        assert [o.id for o in history.orders] == [3, 2, 1]

    async def test_malformed_order_is_skipped(self, client, service):
        client.pages = {1: wire_page([wire_order(1), {"madon": "NO-ID"}])}
        history = await service.fetch_history()
        assert [o.id for o in history.orders] == [1]

    async def test_unreadable_order_body_is_a_network_error(self, client, service):
        client.get_order = lambda code: {}
        with pytest.raises(NetworkError, match="DH1 could not be read"):
            await service.get_order("DH1")

    async def test_refresh_by_code(self, client, service):
        client.orders["DH1"] = wire_order(1, status="Chờ xác nhận")
        order = await service.refresh_order(1, "DH1")
        assert order.canonical_status is CanonicalStatus.PROCESSING


class TestPaginate:

    def test_slices_and_clamps(self):
        orders = [Order.model_validate(wire_order(i)) for i in range(12, 0, -1)]

        first, total = OrderService.paginate(orders, 1, 5)
        last, _ = OrderService.paginate(orders, 3, 5)
        beyond, _ = OrderService.paginate(orders, 9, 5)

        assert total == 3
        assert [o.id for o in first] == [12, 11, 10, 9, 8]
        assert [o.id for o in last] == [2, 1]
        assert beyond == last

    def test_empty_list_has_one_page(self):
        assert OrderService.paginate([], 1) == ([], 1)


class TestActions:

    def test_available_actions(self, service):
        pending = Order.model_validate(wire_order(1))
        delivered = Order.model_validate(wire_order(2, status="Đã giao hàng", payment="Đã thanh toán"))
        gifts = Order.model_validate(wire_order(3, status="Đã hủy", lines=[wire_line(1, 1, 0)]))

        assert service.available_actions(pending) == ["cancel", "retry_payment", "reorder"]
        assert service.available_actions(delivered) == ["review", "reorder"]
        assert service.available_actions(gifts) == []

    async def test_cancel_pending_order(self, client, service):
        order = Order.model_validate(wire_order(5))

        cancelled = await service.cancel_order(order)

        assert ("cancel_order", 5, "DH5") in client.calls
        assert cancelled.canonical_status is CanonicalStatus.CANCELLED

    async def test_cancel_shipping_order_is_refused_locally(self, client, service):
        order = Order.model_validate(wire_order(5, status="Đang vận chuyển"))

        with pytest.raises(ActionNotAllowedError):
            await service.cancel_order(order)

        assert client.calls == []

    async def test_reorder_posts_purchasable_lines(self, client, service):
        client.responses["reorder_items"] = {"message": "Đã thêm vào giỏ hàng", "data": {"id": 77}}
        order = Order.model_validate(wire_order(5, lines=[wire_line(1, 2, 1000), wire_line(2, 1, 0)]))

        result = await service.reorder(order)

        assert client.calls == [("reorder_items", {"items": [{"id_bienthe": 1, "soluong": 2}]})]
        assert result.new_order_id == 77
        assert result.message == "Đã thêm vào giỏ hàng"

    async def test_reorder_without_id_is_not_an_error(self, client, service):
        order = Order.model_validate(wire_order(5))
        result = await service.reorder(order)
        assert not result.has_new_order


class TestReorderResult:

    @pytest.mark.parametrize(
        "body, expected",
        [
            ({"id": 5}, 5),
            ({"data": {"id_donhang": "12"}}, 12),
            ({"data": {"id": None}, "id": 3}, 3),
            ({"data": {"id": "x"}}, None),
            ({}, None),
        ],
    )
    def test_new_order_id(self, body, expected):
        assert reorder_result(body).new_order_id == expected
