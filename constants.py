"""
Application-wide constants for EduCart
"""

# Listing types
POST_TYPE_SALE = 'Sale'
POST_TYPE_RENT = 'Rent'
POST_TYPE_TRADE = 'Trade'
POST_TYPE_EMERGENCY = 'Emergency Lending'
POST_TYPE_PASABUY = 'PasaBuy'
POST_TYPE_GIVEAWAY = 'Giveaway'

POST_TYPES = [
    POST_TYPE_SALE,
    POST_TYPE_RENT,
    POST_TYPE_TRADE,
    POST_TYPE_EMERGENCY,
    POST_TYPE_PASABUY,
    POST_TYPE_GIVEAWAY,
]

# URL slugs used by the transaction form and status-update routes
POST_TYPE_SLUGS = {
    'sale': POST_TYPE_SALE,
    'rent': POST_TYPE_RENT,
    'trade': POST_TYPE_TRADE,
    'emergency': POST_TYPE_EMERGENCY,
    'pasabuy': POST_TYPE_PASABUY,
    'giveaway': POST_TYPE_GIVEAWAY,
}

# Post lifecycle
POST_STATUS_LISTED = 'Listed'
POST_STATUS_UNLISTED = 'Unlisted'
POST_STATUS_SOLD = 'Sold'
POST_STATUSES = [POST_STATUS_LISTED, POST_STATUS_UNLISTED, POST_STATUS_SOLD]

ITEM_CONDITIONS = ['Brand New', 'Like New', 'Lightly Used', 'Well Used', 'Heavily Used']

# Viewer roles on a transaction
ROLE_BUYER = 'Purchases'
ROLE_SELLER = 'Sales'

# Buyer label that opens the payment step
PAY_NOW_LABEL = 'Pay Now'

# Transaction statuses
STATUS_PENDING = 'Pending'
STATUS_ACCEPTED = 'Accepted'
STATUS_PAID = 'Paid'
STATUS_PICKED_UP = 'PickedUp'
STATUS_SHIPPED = 'Shipped'
STATUS_RECEIVED = 'Received'
STATUS_RETURNED = 'Returned'
STATUS_COMPLETED = 'Completed'
STATUS_CANCELLED = 'Cancelled'

TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_CANCELLED}

# Dashboard tabs for the transaction list
STATUS_TABS = {
    STATUS_PENDING: 'active',
    STATUS_ACCEPTED: 'active',
    STATUS_PAID: 'active',
    STATUS_PICKED_UP: 'active',
    STATUS_SHIPPED: 'active',
    STATUS_RECEIVED: 'active',
    STATUS_RETURNED: 'active',
    STATUS_COMPLETED: 'completed',
    STATUS_CANCELLED: 'cancelled',
}

# Payment & fulfillment
PAYMENT_CASH = 'Cash on Hand'
PAYMENT_ONLINE = 'Online Payment'
PAYMENT_METHODS = [PAYMENT_CASH, PAYMENT_ONLINE]

FULFILLMENT_MEETUP = 'Meetup'
FULFILLMENT_DELIVERY = 'Delivery'
FULFILLMENT_METHODS = [FULFILLMENT_MEETUP, FULFILLMENT_DELIVERY]

# Listing types that can be settled online
PAYABLE_POST_TYPES = {POST_TYPE_SALE, POST_TYPE_RENT, POST_TYPE_TRADE, POST_TYPE_PASABUY}

# Delivery fee curve (PHP): base fee covers the first DELIVERY_BASE_KM,
# then DELIVERY_FEE_PER_KM for every started kilometre beyond it.
DELIVERY_BASE_FEE = 50
DELIVERY_BASE_KM = 5
DELIVERY_FEE_PER_KM = 10

# Platform commission taken when escrow is released to the seller
DEFAULT_COMMISSION_RATE = 0.05

# PayMongo
PAYMONGO_API_BASE = 'https://api.paymongo.com/v1'
MIN_GCASH_AMOUNT = 20.00
PAYMONGO_TIMEOUT_SECONDS = 15.0

# Mapbox Directions
MAPBOX_DIRECTIONS_URL = 'https://api.mapbox.com/directions/v5/mapbox/driving'
MAPBOX_TIMEOUT_SECONDS = 10.0

# Wallet ledger types
WALLET_TX_PAYMENT = 'Payment'
WALLET_TX_ESCROW_HOLD = 'Escrow Hold'
WALLET_TX_ESCROW_RELEASE = 'Escrow Release'
WALLET_TX_REFUND = 'Refund'
WALLET_TX_CASH_IN = 'Cash In'
WALLET_TX_CASH_OUT = 'Cash Out'
PLATFORM_TX_COMMISSION = 'Commission'

# Reviews and reports
MIN_RATING = 1
MAX_RATING = 5
MAX_REVIEW_LENGTH = 500
MAX_REPORT_LENGTH = 1000
REPORT_STATUS_PENDING = 'Pending'
REPORT_STATUS_RESOLVED = 'Resolved'
TRANSACTION_REPORT_TYPES = [
    "User did not show up in a confirmed meetup",
    "User failed to deliver or send the item after payment",
    "User refused to pay after confirming purchase",
    "Product received is fake, wrong, or severely damaged",
    "Cancellation without prior notice",
]

# Account roles; Student and Faculty must sign up with the university email domain
USER_ROLES = ['Student', 'Faculty', 'Alumni']
DOMAIN_CHECKED_ROLES = {'student', 'faculty'}

# File Upload Configuration
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10MB
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}
ALLOWED_MIME_TYPES = {'image/jpeg', 'image/png', 'image/jpg', 'image/webp'}
MAX_IMAGES_PER_POST = 5

# Image Processing Configuration
IMAGE_QUALITY = 80  # JPEG quality (0-100)

# Input Validation
MIN_PRICE = 0.00
MAX_PRICE = 100000.00
MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000
MAX_MESSAGE_LENGTH = 2000
MAX_EMAIL_LENGTH = 120
MAX_NAME_LENGTH = 100
MIN_PASSWORD_LENGTH = 6

# Pagination
ITEMS_PER_PAGE = 24

# Rate Limiting (requests per time period)
RATE_LIMIT_LOGIN = "5 per minute"
RATE_LIMIT_REGISTER = "3 per hour"
RATE_LIMIT_PAYMENT = "20 per hour"

# Realtime
REALTIME_QUEUE_SIZE = 100
REALTIME_KEEPALIVE_SECONDS = 15
