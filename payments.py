"""
Payment settlement for EduCart transactions.

Covers the delivery-fee quote (road distance via Mapbox, falling back to
straight-line distance), transaction totals, the escrow wallet (debit,
hold, release with commission, refund) and the PayMongo GCash rail.

Helpers here add rows to the current SQLAlchemy session but never commit;
the calling route owns the commit.
"""
import hashlib
import hmac
import logging
import math

import httpx

from models import db, Wallet, WalletTransaction, PlatformWalletTransaction, AppSetting
from actions import resolve_action
from constants import (
    POST_TYPE_SALE, POST_TYPE_RENT, POST_TYPE_TRADE, POST_TYPE_PASABUY,
    ROLE_BUYER, PAY_NOW_LABEL,
    STATUS_ACCEPTED, STATUS_PAID,
    PAYMENT_ONLINE, FULFILLMENT_DELIVERY, PAYABLE_POST_TYPES,
    DELIVERY_BASE_FEE, DELIVERY_BASE_KM, DELIVERY_FEE_PER_KM,
    DEFAULT_COMMISSION_RATE,
    PAYMONGO_API_BASE, MIN_GCASH_AMOUNT, PAYMONGO_TIMEOUT_SECONDS,
    MAPBOX_DIRECTIONS_URL, MAPBOX_TIMEOUT_SECONDS,
    WALLET_TX_PAYMENT, WALLET_TX_ESCROW_HOLD, WALLET_TX_ESCROW_RELEASE,
    WALLET_TX_REFUND, WALLET_TX_CASH_IN, WALLET_TX_CASH_OUT, PLATFORM_TX_COMMISSION,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


class PaymentError(Exception):
    """A payment could not be made. Carries the HTTP status for the route."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InsufficientBalanceError(PaymentError):
    def __init__(self, message="Insufficient balance"):
        super().__init__(message, 400)


# --- DISTANCE & DELIVERY FEE ---

def haversine_km(lat1, lng1, lat2, lng2):
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def get_road_distance_km(origin_lat, origin_lng, dest_lat, dest_lng, token=None):
    """
    Driving distance from origin to destination using the Mapbox Directions API.

    Falls back to the haversine distance when no token is configured, the
    request fails, or Mapbox finds no route.
    """
    straight = round(haversine_km(origin_lat, origin_lng, dest_lat, dest_lng), 2)
    if not token:
        logger.info("MAPBOX_TOKEN not set, using straight-line distance")
        return straight

    url = f"{MAPBOX_DIRECTIONS_URL}/{origin_lng},{origin_lat};{dest_lng},{dest_lat}"
    try:
        response = httpx.get(
            url,
            params={"access_token": token, "overview": "false"},
            timeout=MAPBOX_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        routes = response.json().get("routes") or []
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Mapbox directions lookup failed, using straight-line distance: {e}")
        return straight

    if not routes:
        logger.warning("Mapbox returned no route, using straight-line distance")
        return straight

    # Mapbox reports metres
    return round(routes[0]["distance"] / 1000, 2)


def calculate_delivery_fee(distance_km):
    """Base fee for the first few kilometres, then a flat rate per started kilometre."""
    if distance_km is None or distance_km < 0:
        raise ValueError("Distance must be a non-negative number")
    if distance_km <= DELIVERY_BASE_KM:
        return float(DELIVERY_BASE_FEE)
    extra_km = math.ceil(distance_km - DELIVERY_BASE_KM)
    return float(DELIVERY_BASE_FEE + extra_km * DELIVERY_FEE_PER_KM)


def quote_delivery(post, lat, lng, token=None):
    """Distance and fee for delivering a post's item to (lat, lng)."""
    if post.pickup_lat is None or post.pickup_lng is None:
        raise PaymentError("This listing has no pickup location for delivery")
    distance = get_road_distance_km(post.pickup_lat, post.pickup_lng, lat, lng, token=token)
    return {
        "distance_km": distance,
        "delivery_fee": calculate_delivery_fee(distance),
    }


# --- TOTALS ---

def compute_total(post_type, price=None, fulfillment_method=None, delivery_fee=None,
                  items_total=None, service_fee=None, rent_days=None, cash_added=None):
    """Amount the buyer owes for a transaction."""
    fee = (delivery_fee or 0) if fulfillment_method == FULFILLMENT_DELIVERY else 0

    if post_type == POST_TYPE_PASABUY:
        total = (items_total or 0) + (service_fee or 0) + fee
    elif post_type == POST_TYPE_RENT:
        total = (price or 0) * (rent_days or 0)
    elif post_type == POST_TYPE_TRADE:
        total = cash_added or 0
    else:
        total = (price or 0) + fee
    return round(total, 2)


def transaction_total(txn):
    return compute_total(
        txn.post_type,
        price=txn.price,
        fulfillment_method=txn.fulfillment_method,
        delivery_fee=txn.delivery_fee,
        items_total=txn.items_total,
        service_fee=txn.service_fee,
        rent_days=txn.rent_days,
        cash_added=txn.cash_added,
    )


def is_payable(txn):
    """
    True when the buyer can settle this transaction online right now.

    Follows the buyer's action label: payment is open where it reads
    "Pay Now", and for an accepted online Sale, whose table has no Accepted row.
    """
    if (txn.payment_method != PAYMENT_ONLINE or txn.post_type not in PAYABLE_POST_TYPES
            or transaction_total(txn) <= 0):
        return False
    label = resolve_action(txn.post_type, ROLE_BUYER, txn.status, txn.payment_method, txn.fulfillment_method)
    if label == PAY_NOW_LABEL:
        return True
    return txn.post_type == POST_TYPE_SALE and (txn.status or '').lower() == STATUS_ACCEPTED.lower()


# --- WALLET ---

def get_commission_rate():
    """Commission rate from AppSetting, falling back to the default."""
    value = AppSetting.get('commission_rate')
    if value is None:
        return DEFAULT_COMMISSION_RATE
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid commission_rate setting {value!r}, using default")
        return DEFAULT_COMMISSION_RATE


def get_wallet(user_id, lock=False):
    """Return the user's wallet, creating an empty one if missing."""
    query = Wallet.query
    if lock:
        query = query.with_for_update()
    wallet = query.filter_by(user_id=user_id).first()
    if wallet is None:
        wallet = Wallet(user_id=user_id, current_balance=0.0, escrow_balance=0.0)
        db.session.add(wallet)
        db.session.flush()
    return wallet


def settle_payment(txn, amount, via):
    """Hold a received payment in the seller's escrow and mark the transaction Paid."""
    seller_wallet = get_wallet(txn.seller_id, lock=True)
    seller_wallet.escrow_balance = round((seller_wallet.escrow_balance or 0) + amount, 2)
    db.session.add(WalletTransaction(
        user_id=txn.seller_id,
        amount=amount,
        type=WALLET_TX_ESCROW_HOLD,
        status='Pending',
        description=f"Payment held for {txn.reference_code}",
        reference_id=txn.id,
    ))
    txn.amount_paid = amount
    txn.paid_via = via
    txn.status = STATUS_PAID
    logger.info(f"PAYMENT: Transaction {txn.id} paid via {via} (₱{amount:.2f} held in escrow)")


def pay_with_wallet(txn, buyer_id, amount):
    """
    Debit the buyer's wallet for the transaction total.

    Raises PaymentError if the caller is not the buyer, the transaction is
    not awaiting payment or the amount does not match the total, and
    InsufficientBalanceError if the wallet cannot cover it.
    """
    if txn.buyer_id != buyer_id:
        raise PaymentError("Only the buyer can pay for this transaction", 403)
    if not is_payable(txn):
        raise PaymentError("This transaction is not awaiting payment", 409)

    total = transaction_total(txn)
    try:
        amount = round(float(amount), 2)
    except (TypeError, ValueError):
        raise PaymentError("Invalid amount")
    if abs(amount - total) > 0.005:
        raise PaymentError(f"Amount must equal the transaction total of ₱{total:.2f}")

    wallet = get_wallet(buyer_id, lock=True)
    if (wallet.current_balance or 0) < total:
        logger.info(f"PAYMENT: Wallet debit refused for transaction {txn.id}, balance {wallet.current_balance}")
        raise InsufficientBalanceError()

    wallet.current_balance = round(wallet.current_balance - total, 2)
    db.session.add(WalletTransaction(
        user_id=buyer_id,
        amount=-total,
        type=WALLET_TX_PAYMENT,
        status='Completed',
        description=f"Payment for {txn.reference_code}",
        reference_id=txn.id,
    ))
    settle_payment(txn, total, via='wallet')
    return total


def _close_hold(txn):
    hold = WalletTransaction.query.filter_by(
        user_id=txn.seller_id, reference_id=txn.id, type=WALLET_TX_ESCROW_HOLD, status='Pending'
    ).first()
    if hold:
        hold.status = 'Completed'


def release_escrow(txn):
    """
    Move a completed transaction's escrowed funds to the seller, less commission.

    Returns the payout, or None when nothing was held.
    """
    if not txn.amount_paid or txn.escrow_released:
        return None

    amount = txn.amount_paid
    commission = round(amount * get_commission_rate(), 2)
    payout = round(amount - commission, 2)

    wallet = get_wallet(txn.seller_id, lock=True)
    wallet.escrow_balance = round(max((wallet.escrow_balance or 0) - amount, 0), 2)
    wallet.current_balance = round((wallet.current_balance or 0) + payout, 2)
    db.session.add(WalletTransaction(
        user_id=txn.seller_id,
        amount=payout,
        type=WALLET_TX_ESCROW_RELEASE,
        status='Completed',
        description=f"Payout for {txn.reference_code}",
        reference_id=txn.id,
    ))
    db.session.add(PlatformWalletTransaction(
        amount=commission,
        type=PLATFORM_TX_COMMISSION,
        transaction_id=txn.id,
    ))
    txn.escrow_released = True
    _close_hold(txn)
    logger.info(f"ESCROW: Released ₱{payout:.2f} to seller {txn.seller_id} for transaction {txn.id} (commission ₱{commission:.2f})")
    return payout


def refund_escrow(txn):
    """Return escrowed funds to the buyer's wallet. Returns the refund, or None."""
    if not txn.amount_paid or txn.escrow_released:
        return None

    amount = txn.amount_paid
    seller_wallet = get_wallet(txn.seller_id, lock=True)
    seller_wallet.escrow_balance = round(max((seller_wallet.escrow_balance or 0) - amount, 0), 2)
    buyer_wallet = get_wallet(txn.buyer_id, lock=True)
    buyer_wallet.current_balance = round((buyer_wallet.current_balance or 0) + amount, 2)
    db.session.add(WalletTransaction(
        user_id=txn.buyer_id,
        amount=amount,
        type=WALLET_TX_REFUND,
        status='Completed',
        description=f"Refund for {txn.reference_code}",
        reference_id=txn.id,
    ))
    txn.escrow_released = True
    _close_hold(txn)
    logger.info(f"ESCROW: Refunded ₱{amount:.2f} to buyer {txn.buyer_id} for transaction {txn.id}")
    return amount


# --- PAYMONGO (GCASH) ---

def _to_centavos(amount):
    return int(round(amount * 100))


def _paymongo_request(method, path, secret_key, **kwargs):
    """Call the PayMongo API and return the `data` object. No retries."""
    if not secret_key:
        raise PaymentError("GCash payments are not configured", 503)
    try:
        response = httpx.request(
            method,
            f"{PAYMONGO_API_BASE}{path}",
            auth=(secret_key, ""),
            timeout=PAYMONGO_TIMEOUT_SECONDS,
            headers={"accept": "application/json"},
            **kwargs,
        )
    except httpx.HTTPError as e:
        logger.error(f"PayMongo {method} {path} failed: {e}", exc_info=True)
        raise PaymentError("Payment provider is unavailable", 502)

    try:
        body = response.json()
    except ValueError:
        body = {}

    if response.status_code >= 400 or not body.get("data"):
        errors = body.get("errors") or [{}]
        detail = errors[0].get("detail") or "Payment provider error"
        logger.error(f"PayMongo {method} {path} returned {response.status_code}: {detail}")
        raise PaymentError(detail, 502)
    return body["data"]


def create_gcash_checkout(txn, amount, secret_key, success_url, cancel_url):
    """Create a PayMongo checkout session for GCash. Returns (session_id, checkout_url)."""
    if amount < MIN_GCASH_AMOUNT:
        raise PaymentError(f"Minimum GCash payment is ₱{MIN_GCASH_AMOUNT:.2f}")

    title = txn.post.title if txn.post else txn.reference_code
    payload = {
        "data": {
            "attributes": {
                "line_items": [{
                    "name": title,
                    "amount": _to_centavos(amount),
                    "currency": "PHP",
                    "quantity": 1,
                }],
                "payment_method_types": ["gcash"],
                "description": f"EduCart {txn.post_type} {txn.reference_code}",
                "reference_number": txn.reference_code,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": {"transaction_id": str(txn.id)},
            }
        }
    }
    data = _paymongo_request("POST", "/checkout_sessions", secret_key, json=payload)
    logger.info(f"PAYMENT: Checkout session {data['id']} created for transaction {txn.id}")
    return data["id"], data["attributes"]["checkout_url"]


def retrieve_checkout_session(session_id, secret_key):
    return _paymongo_request("GET", f"/checkout_sessions/{session_id}", secret_key)


def checkout_session_paid(session_data):
    """True when a checkout session (API object or webhook resource) has a paid payment."""
    attributes = session_data.get("attributes", {})
    for payment in attributes.get("payments") or []:
        if payment.get("attributes", {}).get("status") == "paid":
            return True
    intent = attributes.get("payment_intent") or {}
    return intent.get("attributes", {}).get("status") == "succeeded"


def create_gcash_source(amount, secret_key, success_url, failed_url, billing=None):
    """Create a PayMongo GCash source for a wallet cash-in. Returns (source_id, checkout_url)."""
    if amount < MIN_GCASH_AMOUNT:
        raise PaymentError(f"Minimum GCash payment is ₱{MIN_GCASH_AMOUNT:.2f}")
    attributes = {
        "amount": _to_centavos(amount),
        "currency": "PHP",
        "type": "gcash",
        "redirect": {"success": success_url, "failed": failed_url},
    }
    if billing:
        attributes["billing"] = billing
    data = _paymongo_request("POST", "/sources", secret_key, json={"data": {"attributes": attributes}})
    return data["id"], data["attributes"]["redirect"]["checkout_url"]


def gcash_source_chargeable(source_id, secret_key):
    data = _paymongo_request("GET", f"/sources/{source_id}", secret_key)
    return data.get("attributes", {}).get("status") in ("chargeable", "paid")


def verify_webhook_signature(payload, signature_header, secret):
    """
    Check a `Paymongo-Signature` header (`t=<ts>,te=<sig>,li=<sig>`).

    The signature is an HMAC-SHA256 of "<ts>.<raw body>" keyed with the
    webhook secret; test-mode events sign `te`, live events sign `li`.
    """
    if not signature_header or not secret:
        return False
    parts = {}
    for item in signature_header.split(","):
        if "=" in item:
            key, value = item.split("=", 1)
            parts[key.strip()] = value.strip()
    timestamp = parts.get("t")
    if not timestamp:
        return False

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    expected = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    for key in ("te", "li"):
        candidate = parts.get(key)
        if candidate and hmac.compare_digest(candidate, expected):
            return True
    return False


# --- CASH IN / CASH OUT ---

def start_cash_in(user_id, amount, reference_code, source_id):
    """Pending ledger row for a GCash cash-in; the balance moves on confirmation."""
    row = WalletTransaction(
        user_id=user_id,
        amount=amount,
        type=WALLET_TX_CASH_IN,
        status='Pending',
        description="GCash cash in",
        reference_code=reference_code,
        provider_reference=source_id,
    )
    db.session.add(row)
    logger.info(f"WALLET: Pending cash in {reference_code} of ₱{amount:.2f} for user {user_id}")
    return row


def complete_cash_in(user_id, reference_code, secret_key=None):
    """
    Credit a pending cash-in exactly once.

    When PayMongo is configured the GCash source must be chargeable first.
    Returns the ledger row; raises PaymentError if there is nothing to confirm.
    """
    row = WalletTransaction.query.with_for_update().filter_by(
        user_id=user_id, reference_code=reference_code, type=WALLET_TX_CASH_IN
    ).first()
    if row is None:
        raise PaymentError("Cash in not found", 404)
    if row.status == 'Completed':
        raise PaymentError("Cash in already confirmed", 409)
    if secret_key and row.provider_reference and not gcash_source_chargeable(row.provider_reference, secret_key):
        raise PaymentError("GCash payment has not been completed yet", 409)

    wallet = get_wallet(user_id, lock=True)
    wallet.current_balance = round((wallet.current_balance or 0) + row.amount, 2)
    row.status = 'Completed'
    logger.info(f"WALLET: Cash in {reference_code} completed for user {user_id} (+₱{row.amount:.2f})")
    return row


def cash_out(user_id, amount, gcash_number, reference_code):
    """Debit the wallet for a payout to a GCash number."""
    if amount <= 0:
        raise PaymentError("Amount must be greater than zero")
    wallet = get_wallet(user_id, lock=True)
    if (wallet.current_balance or 0) < amount:
        raise InsufficientBalanceError()
    wallet.current_balance = round(wallet.current_balance - amount, 2)
    row = WalletTransaction(
        user_id=user_id,
        amount=-amount,
        type=WALLET_TX_CASH_OUT,
        status='Completed',
        description=f"Cash out to GCash {gcash_number}",
        reference_code=reference_code,
    )
    db.session.add(row)
    logger.info(f"WALLET: Cash out {reference_code} of ₱{amount:.2f} for user {user_id}")
    return row
