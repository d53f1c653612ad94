from bson import ObjectId
from datetime import datetime


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    return value


def serialize_doc(doc: dict | None) -> dict | None:
    if not doc:
        return doc

    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_value(v)
        out[k] = serialize_value(v)
    return out


def serialize_docs(docs):
    return [serialize_doc(d) for d in docs]


# Never leak credentials or reset state
PRIVATE_USER_FIELDS = {"password", "reset_password_token", "reset_password_expire"}


def serialize_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "role": user.get("role"),
        "phone": user.get("phone"),
        "address": user.get("address"),
        "bio": user.get("bio"),
        "profile_image": user.get("photo_url"),
        "last_login": serialize_value(user.get("last_login")),
        "created_at": serialize_value(user.get("created_at")),
        "updated_at": serialize_value(user.get("updated_at")),
    }


def serialize_order(order: dict, product: dict | None = None) -> dict:
    data = serialize_doc(order)
    if product is not None:
        data["product"] = {
            "id": str(product["_id"]),
            "title": product.get("title"),
            "images": product.get("images", []),
            "category": product.get("category"),
            "price": product.get("price"),
        }
    return data


def serialize_payment(payment: dict, include_gateway: bool = False) -> dict:
    data = serialize_doc(payment)
    if not include_gateway:
        data.pop("gateway_response", None)
    return data
