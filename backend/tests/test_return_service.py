# Overview: Pytest coverage for end-to-end return processing.

"""
Return Processor Tests

Covers the full process_return path against the database:
1. Partial return: refund, status change, restock, ledger update
2. Over-return rejected with nothing written
3. Supervisor threshold: ApprovalRequired, then approval consumed
4. Status transitions to refunded and rejection afterwards
5. Condition-driven restocking
6. Atomicity when a collaborator fails mid-commit, and retries after a write conflict
7. Return history over a date range and its summary
"""

from datetime import date, datetime
from functools import partial
from types import SimpleNamespace

import pytest
from sqlalchemy.orm.exc import StaleDataError

from pos_returns.extensions import db
from pos_returns.models import InventoryAdjustment, Payment, ReturnRecord
from pos_returns.services import (
    auth_service,
    inventory_service,
    ledger_service,
    order_service,
    return_ledger,
    return_service,
)
from pos_returns.services.authorization_gate import AuthorizationGate, SupervisorApproval
from pos_returns.services.return_errors import (
    ApprovalDenied,
    ApprovalRequired,
    EmptySelection,
    InvalidSelection,
    OrderNotFound,
    OrderNotReturnable,
    QuantityExceedsReturnable,
    RefundMethodUnsupported,
    ReturnError,
    UnknownLineItem,
)
from pos_returns.services.return_service import ReturnRequest, ReturnSelection, build_request
from pos_returns.services.settings_service import ReturnPolicy
from pos_returns.time_utils import utcnow


def _request(order, *selections, reason="changed_mind", method="cash", reason_text=None, user=None):
    return ReturnRequest(
        order_id=order.id,
        selections=tuple(selections),
        reason_category=reason,
        reason_text=reason_text,
        refund_method=method,
        processed_by=user.display_name if user else "Casey Cashier",
        processed_by_user_id=user.id if user else None,
    )


def _count(model):
    return db.session.query(model).count()


class TestPartialReturn:

    def test_two_of_five(self, db_session, store, paint_order, cashier, open_policy):
        """5 x Blue Paint 1L at 4,000.00; return 2 resellable for cash."""
        item = paint_order.items[0]
        request = _request(paint_order, ReturnSelection(item.id, 2, "resellable"), user=cashier)

        record = return_service.process_return(request, policy=open_policy)

        assert record.refund_amount_cents == 160000
        assert record.return_number == f"RTN-{utcnow().year}-0001"
        assert record.processed_by == "Casey Cashier"
        assert record.processed_by_user_id == cashier.id
        assert paint_order.status == "partially_refunded"
        assert return_ledger.returnable_quantity(paint_order, item.id) == 3

        [line] = record.lines
        assert line.quantity == 2
        assert line.unit_refund_cents == 80000
        assert line.line_refund_cents == 160000
        assert line.restocked is True

        [adjustment] = inventory_service.get_adjustments_for_return(record.id)
        assert adjustment.product_id == item.product_id
        assert adjustment.quantity_delta == 2
        assert adjustment.reason == "return-restock"

        refund = db.session.query(Payment).filter_by(return_record_id=record.id).one()
        assert refund.amount_cents == -160000
        assert refund.status == "refunded"
        assert refund.method == "cash"

    def test_audit_event_written(self, db_session, store, paint_order, open_policy):
        item = paint_order.items[0]
        record = return_service.process_return(
            _request(paint_order, ReturnSelection(item.id, 1)), policy=open_policy)

        [event] = ledger_service.get_events(store.id, entity_type="return_record", entity_id=record.id)
        assert event.event_type == ledger_service.EVENT_RETURN_PROCESSED
        assert record.return_number in event.note

    def test_return_numbers_sequential(self, db_session, store, paint_order, open_policy):
        item = paint_order.items[0]
        first = return_service.process_return(_request(paint_order, ReturnSelection(item.id, 1)), policy=open_policy)
        second = return_service.process_return(_request(paint_order, ReturnSelection(item.id, 1)), policy=open_policy)

        year = utcnow().year
        assert first.return_number == f"RTN-{year}-0001"
        assert second.return_number == f"RTN-{year}-0002"
        assert return_service.get_return_by_number(store.id, second.return_number.lower()).id == second.id

    def test_numbering_is_per_store(self, db_session, store, other_store, product, paint_order, make_order, open_policy):
        other = make_order(other_store, "POS-2024-0007", [(None, "Gift wrap", 1, 500)])
        return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 1)), policy=open_policy)
        record = return_service.process_return(
            _request(other, ReturnSelection(other.items[0].id, 1)), policy=open_policy)
        assert record.return_number.endswith("-0001")


class TestOverReturn:

    def test_exceeding_remaining_rejected_without_writes(self, db_session, paint_order, open_policy):
        item = paint_order.items[0]
        return_service.process_return(_request(paint_order, ReturnSelection(item.id, 2)), policy=open_policy)

        records_before = _count(ReturnRecord)
        payments_before = _count(Payment)
        adjustments_before = _count(InventoryAdjustment)

        with pytest.raises(QuantityExceedsReturnable) as exc:
            return_service.process_return(_request(paint_order, ReturnSelection(item.id, 4)), policy=open_policy)

        assert exc.value.item_id == item.id
        assert exc.value.requested == 4
        assert exc.value.available == 3
        assert _count(ReturnRecord) == records_before
        assert _count(Payment) == payments_before
        assert _count(InventoryAdjustment) == adjustments_before
        assert paint_order.status == "partially_refunded"

    def test_one_bad_line_rejects_batch(self, db_session, store, product, make_order, open_policy):
        order = make_order(store, "POS-2024-0100", [
            (product, "Blue Paint 1L", 2, 160000),
            (None, "Mixing service", 1, 1500),
        ])
        good, bad = order.items
        with pytest.raises(QuantityExceedsReturnable):
            return_service.process_return(
                _request(order, ReturnSelection(good.id, 1), ReturnSelection(bad.id, 2)),
                policy=open_policy,
            )
        assert _count(ReturnRecord) == 0
        assert order.status == "completed"


class TestSupervisorThreshold:

    @pytest.fixture
    def threshold_policy(self):
        return ReturnPolicy(always_require_supervisor=False, approval_threshold_cents=2000000)

    @pytest.fixture
    def large_order(self, store, product, make_order):
        return make_order(store, "POS-2024-0200", [(product, "Blue Paint 1L", 1, 5000000)])

    def test_approval_required_then_consumed(self, db_session, store, large_order, supervisor, threshold_policy):
        item = large_order.items[0]
        request = _request(large_order, ReturnSelection(item.id, 1))

        with pytest.raises(ApprovalRequired) as exc:
            return_service.process_return(request, policy=threshold_policy)
        assert exc.value.amount_cents == 5000000
        assert exc.value.request is request
        assert _count(ReturnRecord) == 0
        assert large_order.status == "completed"

        gate = AuthorizationGate(threshold_policy, request, exc.value.amount_cents)
        gate.begin()
        approval = gate.approve("supervisor", "4821", partial(auth_service.verify_supervisor_credential, store.id))

        record = return_service.process_return(request, policy=threshold_policy, authorization=approval)

        assert record.processed_by == "Approved by #1042"
        assert record.supervisor_user_id == supervisor.id
        assert record.supervisor_name == "Sam Supervisor"
        assert record.approved_amount_cents == 5000000
        assert large_order.status == "refunded"

    def test_approval_required_is_not_a_return_error(self):
        assert not issubclass(ApprovalRequired, ReturnError)

    def test_below_threshold_needs_no_approval(self, db_session, paint_order, threshold_policy):
        record = return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 1)), policy=threshold_policy)
        assert record.supervisor_user_id is None

    def test_default_policy_always_requires(self, db_session, paint_order, strict_policy):
        with pytest.raises(ApprovalRequired):
            return_service.process_return(
                _request(paint_order, ReturnSelection(paint_order.items[0].id, 1)), policy=strict_policy)

    def test_approval_for_smaller_amount_denied(self, db_session, large_order, threshold_policy):
        approval = SupervisorApproval(supervisor_name="Sam", amount_cents=100, approved_at=datetime(2024, 3, 1))
        request = _request(large_order, ReturnSelection(large_order.items[0].id, 1))
        with pytest.raises(ApprovalDenied) as exc:
            return_service.process_return(request, policy=threshold_policy, authorization=approval)
        assert exc.value.request is request
        assert _count(ReturnRecord) == 0

    def test_attached_approval_recorded_when_not_required(self, db_session, paint_order, open_policy):
        approval = SupervisorApproval(
            supervisor_name="Morgan Manager", amount_cents=80000, approved_at=datetime(2024, 3, 1))
        record = return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 1)),
            policy=open_policy,
            authorization=approval,
        )
        assert record.processed_by == "Approved by Morgan Manager"

    def test_approval_still_covers_refund_after_another_return(
            self, db_session, store, product, make_order, threshold_policy):
        """3 units sold for 100,000.00; one is returned on another terminal mid-approval."""
        order = make_order(store, "POS-2024-0210", [(product, "Blue Paint 1L", 3, 10000000)])
        item = order.items[0]
        request = _request(order, ReturnSelection(item.id, 1))
        quote = return_service.quote_return(request, policy=threshold_policy)
        assert quote.refund_cents == 3333333
        approval = SupervisorApproval(
            supervisor_name="Sam Supervisor", amount_cents=quote.refund_cents, approved_at=datetime(2024, 3, 1))

        other = SupervisorApproval(
            supervisor_name="Morgan Manager", amount_cents=3333333, approved_at=datetime(2024, 3, 1))
        return_service.process_return(
            _request(order, ReturnSelection(item.id, 1)), policy=threshold_policy, authorization=other)

        record = return_service.process_return(request, policy=threshold_policy, authorization=approval)
        assert record.refund_amount_cents == 3333333
        assert record.approved_amount_cents == 3333333


class TestStatusTransitions:

    def test_full_return_marks_refunded(self, db_session, paint_order, open_policy):
        item = paint_order.items[0]
        return_service.process_return(_request(paint_order, ReturnSelection(item.id, 2)), policy=open_policy)
        assert paint_order.status == "partially_refunded"

        return_service.process_return(_request(paint_order, ReturnSelection(item.id, 3)), policy=open_policy)
        assert paint_order.status == "refunded"

        with pytest.raises(OrderNotReturnable):
            return_service.process_return(_request(paint_order, ReturnSelection(item.id, 1)), policy=open_policy)

    def test_cancelled_order_rejected(self, db_session, store, product, make_order, open_policy):
        order = make_order(store, "POS-2024-0300", [(product, "Blue Paint 1L", 1, 80000)], status="cancelled")
        with pytest.raises(OrderNotReturnable) as exc:
            return_service.process_return(_request(order, ReturnSelection(order.items[0].id, 1)), policy=open_policy)
        assert exc.value.status == "cancelled"

    def test_each_return_refunds_the_unit_price(self, db_session, store, product, make_order, open_policy):
        order = make_order(store, "POS-2024-0400", [(product, "Blue Paint 1L", 3, 1000)])
        item = order.items[0]
        totals = [
            return_service.process_return(_request(order, ReturnSelection(item.id, 1)), policy=open_policy)
            .refund_amount_cents
            for _ in range(3)
        ]
        assert totals == [333, 333, 333]
        assert order.status == "refunded"


class TestRestockByCondition:

    def test_damaged_and_defective_not_restocked(self, db_session, store, product, make_order, open_policy):
        order = make_order(store, "POS-2024-0500", [
            (product, "Blue Paint 1L", 2, 160000),
            (product, "Blue Paint 1L", 2, 160000),
            (product, "Blue Paint 1L", 2, 160000),
        ])
        resellable, damaged, defective = order.items
        record = return_service.process_return(
            _request(
                order,
                ReturnSelection(resellable.id, 1, "resellable"),
                ReturnSelection(damaged.id, 1, "damaged"),
                ReturnSelection(defective.id, 2, "defective"),
                reason="defective",
            ),
            policy=open_policy,
        )

        assert [line.restocked for line in record.lines] == [True, False, False]
        adjustments = inventory_service.get_adjustments_for_return(record.id)
        assert len(adjustments) == 1
        assert adjustments[0].quantity_delta == 1
        assert inventory_service.get_restocked_quantity(store.id, product.id) == 1

    def test_line_without_product_not_restocked(self, db_session, store, make_order, open_policy):
        order = make_order(store, "POS-2024-0600", [(None, "Mixing service", 1, 1500)])
        record = return_service.process_return(
            _request(order, ReturnSelection(order.items[0].id, 1)), policy=open_policy)
        assert record.lines[0].restocked is False
        assert inventory_service.get_adjustments_for_return(record.id) == []

    def test_custom_restock_sink(self, db_session, paint_order, open_policy):
        received = []
        return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 2)),
            policy=open_policy,
            restock=received.append,
        )
        assert [(i.product_id, i.quantity) for i in received] == [(paint_order.items[0].product_id, 2)]
        assert _count(InventoryAdjustment) == 0


class TestAtomicity:

    def test_sink_failure_rolls_back_everything(self, db_session, paint_order, open_policy):
        def failing_sink(instruction):
            raise RuntimeError("inventory service unavailable")

        payments_before = _count(Payment)
        with pytest.raises(RuntimeError):
            return_service.process_return(
                _request(paint_order, ReturnSelection(paint_order.items[0].id, 2)),
                policy=open_policy,
                restock=failing_sink,
            )

        assert _count(ReturnRecord) == 0
        assert _count(Payment) == payments_before
        assert paint_order.status == "completed"
        assert return_ledger.returned_quantities(paint_order.id) == {}

    def test_write_conflict_retry_restocks_once(self, db_session, paint_order, open_policy, monkeypatch):
        """A lost race on the first attempt is retried; the sink sees one instruction."""
        real = return_service.append_audit_event
        attempts = []

        def conflict_once(**kwargs):
            attempts.append(kwargs["entity_id"])
            if len(attempts) == 1:
                raise StaleDataError("order version changed")
            return real(**kwargs)

        monkeypatch.setattr(return_service, "append_audit_event", conflict_once)
        received = []
        record = return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 2)),
            policy=open_policy,
            restock=received.append,
        )

        assert len(attempts) == 2
        assert [(i.quantity, i.return_record_id) for i in received] == [(2, record.id)]
        assert _count(ReturnRecord) == 1
        assert return_ledger.returned_quantities(paint_order.id) == {paint_order.items[0].id: 2}

    def test_write_conflict_retry_writes_one_adjustment(self, db_session, paint_order, open_policy, monkeypatch):
        real = return_service.append_audit_event
        attempts = []

        def conflict_once(**kwargs):
            attempts.append(kwargs["entity_id"])
            if len(attempts) == 1:
                raise StaleDataError("order version changed")
            return real(**kwargs)

        monkeypatch.setattr(return_service, "append_audit_event", conflict_once)
        record = return_service.process_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 2)), policy=open_policy)

        adjustments = inventory_service.get_adjustments_for_return(record.id)
        assert [a.quantity_delta for a in adjustments] == [2]
        assert _count(InventoryAdjustment) == 1


class TestValidation:

    def test_empty_selection(self, db_session, paint_order, open_policy):
        with pytest.raises(EmptySelection):
            return_service.process_return(_request(paint_order), policy=open_policy)

    def test_unknown_order(self, db_session, open_policy):
        request = ReturnRequest(
            order_id=424242,
            selections=(ReturnSelection(1, 1),),
            reason_category="changed_mind",
            refund_method="cash",
            processed_by="Casey Cashier",
        )
        with pytest.raises(OrderNotFound):
            return_service.process_return(request, policy=open_policy)

    def test_unknown_line(self, db_session, paint_order, open_policy):
        with pytest.raises(UnknownLineItem):
            return_service.process_return(_request(paint_order, ReturnSelection(999999, 1)), policy=open_policy)

    def test_duplicate_line_rejected(self, db_session, paint_order, open_policy):
        item = paint_order.items[0]
        with pytest.raises(InvalidSelection) as exc:
            return_service.process_return(
                _request(paint_order, ReturnSelection(item.id, 1), ReturnSelection(item.id, 1)),
                policy=open_policy,
            )
        assert exc.value.item_id == item.id

    def test_unknown_condition(self, db_session, paint_order, open_policy):
        with pytest.raises(InvalidSelection):
            return_service.process_return(
                _request(paint_order, ReturnSelection(paint_order.items[0].id, 1, "mint")), policy=open_policy)

    def test_other_reason_needs_text(self, db_session, paint_order, open_policy):
        item = paint_order.items[0]
        with pytest.raises(InvalidSelection):
            return_service.process_return(
                _request(paint_order, ReturnSelection(item.id, 1), reason="other"), policy=open_policy)

        record = return_service.process_return(
            _request(paint_order, ReturnSelection(item.id, 1), reason="other", reason_text="Gift duplicate"),
            policy=open_policy,
        )
        assert record.reason_text == "Gift duplicate"

    def test_refund_method_outside_policy(self, db_session, paint_order):
        policy = ReturnPolicy(always_require_supervisor=False, allowed_refund_methods=frozenset({"store_credit"}))
        with pytest.raises(RefundMethodUnsupported):
            return_service.process_return(
                _request(paint_order, ReturnSelection(paint_order.items[0].id, 1), method="cash"), policy=policy)


class TestBuildRequestAndQuote:

    def test_build_request_defaults_condition(self, db_session, paint_order):
        request = build_request(
            {
                "order_id": paint_order.id,
                "items": [{"item_id": paint_order.items[0].id, "quantity": 2}],
                "reason_category": "changed_mind",
                "refund_method": "card",
            },
            processed_by="Casey Cashier",
        )
        assert request.selections[0].condition == "resellable"
        assert request.to_dict()["selections"] == [
            {"item_id": paint_order.items[0].id, "quantity": 2, "condition": "resellable"}
        ]

    def test_build_request_rejects_non_list_items(self):
        with pytest.raises(InvalidSelection):
            build_request({"items": "everything"}, processed_by="Casey Cashier")

    def test_quote_writes_nothing(self, db_session, paint_order, strict_policy):
        quote = return_service.quote_return(
            _request(paint_order, ReturnSelection(paint_order.items[0].id, 2)), policy=strict_policy)
        assert quote.refund_cents == 160000
        assert quote.approval_required is True
        assert quote.to_dict()["lines"][0]["refund_cents"] == 160000
        assert _count(ReturnRecord) == 0


class TestCommitTimeRevalidation:

    def test_units_returned_after_quote_are_caught(self, db_session, paint_order, open_policy, monkeypatch):
        """Another terminal returns 4 units between quote and commit."""
        item = paint_order.items[0]
        return_service.process_return(_request(paint_order, ReturnSelection(item.id, 4)), policy=open_policy)

        real = return_ledger.returned_quantities
        calls = []

        def stale_then_real(order_id):
            calls.append(order_id)
            # The quote sees the history as it was before the other terminal
            return {} if len(calls) == 1 else real(order_id)

        monkeypatch.setattr(return_ledger, "returned_quantities", stale_then_real)

        with pytest.raises(QuantityExceedsReturnable) as exc:
            return_service.process_return(_request(paint_order, ReturnSelection(item.id, 2)), policy=open_policy)

        assert exc.value.available == 1
        assert len(calls) == 2
        assert _count(ReturnRecord) == 1


class TestReturnHistory:

    @pytest.fixture
    def dated_returns(self, db_session, store, paint_order, open_policy):
        item = paint_order.items[0]
        records = []
        for created_at, reason in (
            (datetime(2024, 3, 1, 9, 0), "changed_mind"),
            (datetime(2024, 3, 2, 23, 59, 59), "defective"),
            (datetime(2024, 3, 3, 0, 0), "changed_mind"),
        ):
            record = return_service.process_return(
                _request(paint_order, ReturnSelection(item.id, 1), reason=reason), policy=open_policy)
            record.created_at = created_at
            records.append(record)
        db.session.commit()
        return records

    def test_range_is_inclusive_of_end_day(self, store, dated_returns):
        records = order_service.list_returns(store.id, date(2024, 3, 1), date(2024, 3, 2))
        assert [r.id for r in records] == [dated_returns[0].id, dated_returns[1].id]

    def test_open_ended_range(self, store, dated_returns):
        assert len(order_service.list_returns(store.id, start=date(2024, 3, 2))) == 2
        assert len(order_service.list_returns(store.id)) == 3

    def test_other_store_not_listed(self, other_store, dated_returns):
        assert order_service.list_returns(other_store.id) == []

    def test_summary_by_reason(self, store, dated_returns):
        summary = order_service.summarize_returns(order_service.list_returns(store.id))
        assert summary == {
            "total_returns": 3,
            "total_refunded_cents": 240000,
            "average_refund_cents": 80000,
            "by_reason": {"changed_mind": 2, "defective": 1},
        }

    def test_average_rounds_half_up(self):
        records = [SimpleNamespace(refund_amount_cents=c, reason_category="other") for c in (100, 101)]
        assert order_service.summarize_returns(records)["average_refund_cents"] == 101

    def test_empty_summary(self):
        assert order_service.summarize_returns([]) == {
            "total_returns": 0,
            "total_refunded_cents": 0,
            "average_refund_cents": 0,
            "by_reason": {},
        }
