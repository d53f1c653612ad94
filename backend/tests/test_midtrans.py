import pytest

from utils.midtrans import (
    build_snap_params,
    generate_transaction_id,
    map_transaction_status,
    notification_signature,
    verify_notification_signature,
)
from utils.products import build_preview_video, extract_youtube_video_id, google_drive_file_id


@pytest.mark.parametrize(
    "transaction_status, fraud_status, expected",
    [
        ("capture", "accept", ("completed", "confirmed")),
        ("capture", "challenge", ("processing", None)),
        ("capture", "deny", ("failed", None)),
        ("settlement", None, ("completed", "confirmed")),
        ("pending", None, ("pending", None)),
        ("deny", None, ("failed", "cancelled")),
        ("expire", None, ("failed", "cancelled")),
        ("cancel", None, ("failed", "cancelled")),
        ("refund", None, ("pending", None)),
    ],
)
def test_status_mapping(transaction_status, fraud_status, expected):
    assert map_transaction_status(transaction_status, fraud_status) == expected


def test_signature_matches_sha512_of_fields():
    import hashlib

    expected = hashlib.sha512(b"TXN-1200150000.00SB-Mid-server-test-key").hexdigest()
    assert notification_signature(order_id="TXN-1", status_code="200", gross_amount="150000.00") == expected

    body = {"order_id": "TXN-1", "status_code": "200", "gross_amount": "150000.00", "signature_key": expected}
    assert verify_notification_signature(body)
    assert not verify_notification_signature({**body, "gross_amount": "1.00"})


def test_transaction_id_format():
    txn = generate_transaction_id()
    prefix, millis, suffix = txn.split("-")
    assert prefix == "TXN"
    assert millis.isdigit()
    assert len(suffix) == 8


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://youtube.com/shorts/dQw4w9WgXcQ",
    ],
)
def test_youtube_ids(url):
    assert extract_youtube_video_id(url) == "dQw4w9WgXcQ"


def test_preview_video_rejects_other_hosts():
    assert build_preview_video("https://vimeo.com/123") is None
    preview = build_preview_video("https://youtu.be/dQw4w9WgXcQ")
    assert preview["embed_url"] == "https://www.youtube.com/embed/dQw4w9WgXcQ"


def test_google_drive_file_id():
    assert google_drive_file_id("https://drive.google.com/file/d/1AbC_d-9/view?usp=sharing") == "1AbC_d-9"
    assert google_drive_file_id("https://drive.google.com/open?id=XyZ123") == "XyZ123"
    assert google_drive_file_id("https://example.com/file.zip") is None


def test_snap_gross_amount_matches_item_lines_for_fractional_price():
    order = {"_id": "o1", "product_id": "p1", "unit_price": 10.4, "quantity": 3}
    params = build_snap_params(
        transaction_id="TXN-1",
        amount=31.2,
        order=order,
        product={"title": "Landing Page", "category": "web"},
        customer_name="Buyer",
        customer_email="buyer@example.com",
    )

    item = params["item_details"][0]
    assert item["price"] == 10
    assert item["quantity"] == 3
    assert params["transaction_details"]["gross_amount"] == item["price"] * item["quantity"]
