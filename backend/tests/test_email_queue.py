import pytest

from utils import email_queue


async def test_failed_email_is_retried_three_times_then_dropped(monkeypatch):
    attempts = []

    async def always_fails(**payload):
        attempts.append(payload["to"])
        raise ConnectionError("smtp unavailable")

    monkeypatch.setitem(email_queue.SENDERS, "payment_success", always_fails)
    email_queue.enqueue("payment_success", to="buyer@example.com", username="buyer",
                        transaction_id="TXN-1", amount=1000)

    queue = email_queue.get_queue()
    results = []
    while not queue.empty():
        results.append(await email_queue.process_next())

    # first attempt plus three retries
    assert len(attempts) == 4
    assert results == [False, False, False, False]
    assert queue.empty()


async def test_email_recovers_on_retry(monkeypatch):
    attempts = []

    async def flaky(**payload):
        attempts.append(1)
        if len(attempts) < 2:
            raise ConnectionError("smtp hiccup")

    monkeypatch.setitem(email_queue.SENDERS, "payment_success", flaky)
    email_queue.enqueue("payment_success", to="buyer@example.com", username="buyer",
                        transaction_id="TXN-1", amount=1000)

    queue = email_queue.get_queue()
    results = []
    while not queue.empty():
        results.append(await email_queue.process_next())

    assert results == [False, True]


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        email_queue.enqueue("newsletter", to="a@example.com")
