# backend/config/constants.py

# -----------------------------
# ORDERS / CART LIMITS
# -----------------------------

MAX_ITEM_QUANTITY = 999
ORDER_NOTES_MAX_LENGTH = 500

# -----------------------------
# PAYMENTS
# -----------------------------

DEFAULT_CURRENCY = "IDR"
ACTIVE_PAYMENT_STATUSES = ["pending", "processing", "completed"]

# -----------------------------
# PURCHASES / PAYOUTS
# -----------------------------

REFUND_WINDOW_DAYS = 7
DOWNLOAD_LINK_DAYS = 30

# -----------------------------
# UPLOADS
# -----------------------------

MAX_PRODUCT_IMAGES = 2
MAX_PRODUCT_VIDEOS = 3
MAX_IMAGE_BYTES = 5 * 1024 * 1024       # per product image
MAX_PHOTO_BYTES = 2 * 1024 * 1024       # profile photo
MAX_SOURCE_CODE_BYTES = 50 * 1024 * 1024
ZIP_MIME_TYPES = {"application/zip", "application/x-zip-compressed"}

# -----------------------------
# AUTH
# -----------------------------

RESET_TOKEN_MINUTES = 10
PASSWORD_MIN_LENGTH = 6

# -----------------------------
# EMAIL
# -----------------------------

EMAIL_MAX_RETRIES = 3
EMAIL_SEND_DELAY_SECONDS = 1
