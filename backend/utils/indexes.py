from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from utils.idempotency import IDEMPOTENCY_TTL_SECONDS


def _normalize_key_pairs(keys):
    return [(k, v) for k, v in keys]


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create index safely.
    If Mongo reports IndexOptionsConflict/IndexKeySpecsConflict for same key pattern,
    drop the conflicting index and recreate with desired options.
    """
    desired_key = _normalize_key_pairs(keys)
    desired_name = kwargs.get("name")
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in {85, 86}:
            raise

        conflicting_names = []
        async for idx in collection.list_indexes():
            idx_key = _normalize_key_pairs(list(idx.get("key", {}).items()))
            if idx_key == desired_key:
                idx_name = idx.get("name")
                if idx_name and idx_name != desired_name:
                    conflicting_names.append(idx_name)

        for idx_name in conflicting_names:
            await collection.drop_index(idx_name)

        await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    # Roles / users
    await _create_index_safe(
        db.roles,
        [("role_name", ASCENDING)],
        name="roles_name_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.users,
        [("email", ASCENDING)],
        name="users_email_unique_idx",
        unique=True,
    )
    await _create_index_safe(
        db.users,
        [("reset_password_token", ASCENDING)],
        name="users_reset_token_idx",
        sparse=True,
    )

    # Products
    await _create_index_safe(
        db.products,
        [("is_active", ASCENDING), ("created_at", DESCENDING)],
        name="products_active_created_idx",
    )
    await _create_index_safe(
        db.products,
        [("category", ASCENDING), ("price", ASCENDING)],
        name="products_category_price_idx",
    )
    await _create_index_safe(
        db.products,
        [("user_id", ASCENDING), ("is_active", ASCENDING)],
        name="products_user_active_idx",
    )

    # Cart / favorites: one row per (user, product)
    await _create_index_safe(
        db.carts,
        [("user_id", ASCENDING), ("product_id", ASCENDING)],
        name="carts_user_product_unique",
        unique=True,
    )
    await _create_index_safe(
        db.favorites,
        [("user_id", ASCENDING), ("product_id", ASCENDING)],
        name="favorites_user_product_unique",
        unique=True,
    )

    # Orders
    await _create_index_safe(
        db.orders,
        [("order_number", ASCENDING)],
        name="orders_number_unique_idx",
        unique=True,
        sparse=True,
    )
    await _create_index_safe(
        db.orders,
        [("user_id", ASCENDING), ("order_date", DESCENDING)],
        name="orders_user_date_idx",
    )
    await _create_index_safe(
        db.orders,
        [("status", ASCENDING), ("order_date", DESCENDING)],
        name="orders_status_date_idx",
    )

    # Payments
    await _create_index_safe(
        db.payments,
        [("transaction_id", ASCENDING)],
        name="payments_transaction_unique",
        unique=True,
    )
    await _create_index_safe(
        db.payments,
        [("payment_status", ASCENDING), ("created_at", ASCENDING)],
        name="payments_status_created_idx",
    )
    await _create_index_safe(
        db.payments,
        [("order_id", ASCENDING), ("payment_status", ASCENDING)],
        name="payments_order_status_idx",
    )
    await _create_index_safe(
        db.payments,
        [("user_id", ASCENDING), ("payment_date", DESCENDING)],
        name="payments_user_date_idx",
    )

    # Payouts
    await _create_index_safe(
        db.payouts,
        [("transaction_id", ASCENDING)],
        name="payouts_transaction_unique",
        unique=True,
    )
    await _create_index_safe(
        db.payouts,
        [("user_id", ASCENDING), ("created_at", DESCENDING)],
        name="payouts_user_created_idx",
    )

    # Reviews
    await _create_index_safe(
        db.reviews,
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("order_id", ASCENDING)],
        name="reviews_user_product_order_unique",
        unique=True,
    )
    await _create_index_safe(
        db.reviews,
        [("product_id", ASCENDING), ("created_at", DESCENDING)],
        name="reviews_product_created_idx",
    )

    # Idempotency
    await _create_index_safe(
        db.idempotency_keys,
        [("key", ASCENDING), ("scope", ASCENDING)],
        name="idempotency_key_scope_unique",
        unique=True,
    )
    await _create_index_safe(
        db.idempotency_keys,
        [("created_at", ASCENDING)],
        name="idempotency_ttl_idx",
        expireAfterSeconds=IDEMPOTENCY_TTL_SECONDS,
    )

    # Audit
    await _create_index_safe(
        db.audit_logs,
        [("created_at", ASCENDING)],
        name="audit_logs_created_idx",
    )
