from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from gritsync.models.payment import Payment
from gritsync.models.receipt import Receipt
from gritsync.services import settlement
from gritsync.services.settlement import issue_receipt


def test_issue_receipt_once(db, make_payment):
    payment = make_payment(amount="458.00", payment_type="full", status="paid")

    receipt = issue_receipt(db, payment)
    db.commit()

    assert receipt.receipt_number.startswith("RCP-")
    assert receipt.amount == Decimal("458.00")
    assert issue_receipt(db, payment) is None
    assert db.query(Receipt).count() == 1


def test_receipt_race_is_a_no_op(db, make_payment, mocker):
    payment = make_payment(amount="250.00", payment_type="step2", status="paid")
    issue_receipt(db, payment)
    db.commit()

    # the existence check misses a receipt another delivery just inserted
    mocker.patch.object(settlement, "receipt_exists", side_effect=[False, True])
    payment.admin_note = "settled"
    db.flush()

    assert issue_receipt(db, payment) is None
    db.commit()

    db.expire_all()
    assert db.query(Receipt).filter_by(payment_id=payment.id).count() == 1
    assert db.get(Payment, payment.id).admin_note == "settled"


def test_unrelated_integrity_error_propagates(db, make_payment, mocker):
    payment = make_payment(status="paid")
    other = make_payment(status="paid")
    taken = issue_receipt(db, other)
    db.commit()

    mocker.patch.object(settlement, "new_receipt_number", return_value=taken.receipt_number)

    with pytest.raises(IntegrityError):
        issue_receipt(db, payment)
