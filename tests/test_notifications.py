from decimal import Decimal
from types import SimpleNamespace

import requests

from utils.notifications import WebhookNotifier
from utils.task_payments import PaymentOutcome


class FakeSession:

    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return SimpleNamespace(status_code=self.status_code, text="")


def test_completed_payment_is_posted():
    session = FakeSession()
    notifier = WebhookNotifier("https://hooks.example.com/payments", session=session)

    notifier.on_completed(PaymentOutcome(task_id="t1", status="completed", tx_hash="0xabc", block_number=9))

    [post] = session.posts
    assert post["url"] == "https://hooks.example.com/payments"
    assert post["json"]["event"] == "payment.completed"
    assert post["json"]["task_id"] == "t1"
    assert post["json"]["tx_hash"] == "0xabc"
    assert post["timeout"] == 10


def test_low_balance_alert_serializes_amounts():
    session = FakeSession()
    notifier = WebhookNotifier("https://hooks.example.com/payments", session=session)

    notifier.low_balance("p1", Decimal("12.5"), Decimal("100"))

    assert session.posts[0]["json"] == {
        "event": "escrow.low_balance",
        "project_id": "p1",
        "balance": "12.5",
        "threshold": "100",
    }


def test_delivery_errors_are_not_raised():
    session = FakeSession(error=requests.ConnectionError("refused"))
    notifier = WebhookNotifier("https://hooks.example.com/payments", session=session)

    notifier.on_failed(PaymentOutcome(task_id="t1", status="failed", error="reverted"))
    assert len(session.posts) == 1


def test_rejected_delivery_is_not_raised():
    session = FakeSession(status_code=500)
    notifier = WebhookNotifier("https://hooks.example.com/payments", session=session)

    notifier.on_failed(PaymentOutcome(task_id="t1", status="failed", error="reverted"))
    assert session.posts[0]["json"]["event"] == "payment.failed"
