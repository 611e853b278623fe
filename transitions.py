"""
Status transitions for EduCart transactions.

TRANSITIONS maps each actionable label (per listing type and viewer role)
to the status-update endpoint that performs it, the status it moves the
transaction to and the statuses it may start from. The same table drives
the control a client renders (describe_control) and the server-side check
in apply_transition, so a label is only actionable where the server will
accept it.
"""
import logging
from datetime import datetime

from models import db, Transaction, Message, Notification, Post
from actions import resolve_action
from payments import release_escrow, refund_escrow, is_payable
from constants import (
    ROLE_BUYER, ROLE_SELLER, PAY_NOW_LABEL,
    POST_TYPE_SALE, POST_TYPE_RENT, POST_TYPE_TRADE,
    POST_TYPE_EMERGENCY, POST_TYPE_PASABUY, POST_TYPE_GIVEAWAY,
    STATUS_PENDING, STATUS_ACCEPTED, STATUS_PAID, STATUS_PICKED_UP,
    STATUS_SHIPPED, STATUS_RECEIVED, STATUS_RETURNED,
    STATUS_COMPLETED, STATUS_CANCELLED, TERMINAL_STATUSES,
    POST_STATUS_SOLD,
)

logger = logging.getLogger(__name__)

STATUS_UPDATE_BASE = '/api/status-update'

NON_TERMINAL = frozenset({
    STATUS_PENDING, STATUS_ACCEPTED, STATUS_PAID, STATUS_PICKED_UP,
    STATUS_SHIPPED, STATUS_RECEIVED, STATUS_RETURNED,
})


class TransitionError(Exception):
    """A status change was refused. Carries the HTTP status for the route."""

    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class Transition:
    """
    One state-advancing step.

    sends_status: the endpoint takes {transactionId, newStatus} rather than
    encoding the step in its path.
    decision: the step is the seller's first response (accept/reject) and is
    not shown as a resolver label.
    """

    def __init__(self, endpoint, new_status, from_statuses, confirm_text, success_message,
                 sends_status=False, decision=False):
        self.endpoint = endpoint
        self.new_status = new_status
        self.from_statuses = frozenset(from_statuses)
        self.confirm_text = confirm_text
        self.success_message = success_message
        self.sends_status = sends_status
        self.decision = decision

    def __repr__(self):
        return f"<Transition {self.endpoint} -> {self.new_status}>"


def _by_status(slug, new_status, from_statuses, confirm_text, success_message, **kwargs):
    return Transition(f"{STATUS_UPDATE_BASE}/{slug}", new_status, from_statuses,
                      confirm_text, success_message, sends_status=True, **kwargs)


def _by_step(slug, step, new_status, from_statuses, confirm_text, success_message, **kwargs):
    return Transition(f"{STATUS_UPDATE_BASE}/{slug}/{step}", new_status, from_statuses,
                      confirm_text, success_message, **kwargs)


def _order_transitions(post_type, slug):
    return {
        (post_type, ROLE_SELLER, "Order Picked Up"): _by_status(
            slug, STATUS_PICKED_UP, {STATUS_PAID},
            "Confirm that the order has been picked up for delivery?",
            "Order marked as picked up"),
        (post_type, ROLE_BUYER, "Order Received"): _by_status(
            slug, STATUS_COMPLETED, {STATUS_PICKED_UP},
            "Confirm that you received your order? This completes the transaction.",
            "Order received. Transaction completed!"),
        (post_type, ROLE_BUYER, "Item Received"): _by_status(
            slug, STATUS_COMPLETED, {STATUS_ACCEPTED, STATUS_PAID},
            "Confirm that you received the item? This completes the transaction.",
            "Item received. Transaction completed!"),
    }


TRANSITIONS = {}
TRANSITIONS.update(_order_transitions(POST_TYPE_SALE, 'sale'))
TRANSITIONS.update(_order_transitions(POST_TYPE_PASABUY, 'pasabuy'))
TRANSITIONS.update({
    # Rent
    (POST_TYPE_RENT, ROLE_SELLER, "Accept"): _by_step(
        'rent', 'accept', STATUS_ACCEPTED, {STATUS_PENDING},
        "Accept this rental request?", "Rental accepted", decision=True),
    (POST_TYPE_RENT, ROLE_SELLER, "Mark as Picked Up"): _by_step(
        'rent', 'pickedup', STATUS_PICKED_UP, {STATUS_ACCEPTED, STATUS_PAID},
        "Confirm that the renter has picked up the item?", "Item marked as picked up"),
    (POST_TYPE_RENT, ROLE_BUYER, "Return Item"): _by_step(
        'rent', 'return', STATUS_RETURNED, {STATUS_PICKED_UP},
        "Confirm that you have returned the item?", "Item marked as returned"),
    (POST_TYPE_RENT, ROLE_SELLER, "Confirm Return"): _by_step(
        'rent', 'confirm-return', STATUS_COMPLETED, {STATUS_RETURNED},
        "Confirm that you got the item back? This completes the rental.",
        "Return confirmed. Rental completed!"),

    # Trade
    (POST_TYPE_TRADE, ROLE_SELLER, "Accept"): _by_status(
        'trade', STATUS_ACCEPTED, {STATUS_PENDING},
        "Accept this trade offer?", "Trade accepted", decision=True),
    (POST_TYPE_TRADE, ROLE_SELLER, "Reject"): _by_status(
        'trade', STATUS_CANCELLED, NON_TERMINAL,
        "Reject this trade offer?", "Trade rejected", decision=True),
    (POST_TYPE_TRADE, ROLE_BUYER, "Confirm Item Received"): _by_status(
        'trade', STATUS_RECEIVED, {STATUS_ACCEPTED},
        "Confirm that you received the seller's item?", "Item receipt confirmed"),
    (POST_TYPE_TRADE, ROLE_SELLER, "Confirm Item Received"): _by_status(
        'trade', STATUS_COMPLETED, {STATUS_RECEIVED},
        "Confirm that you received the buyer's item? This completes the trade.",
        "Trade completed!"),
    (POST_TYPE_TRADE, ROLE_SELLER, "Mark as Exchanged"): _by_status(
        'trade', STATUS_PICKED_UP, {STATUS_PAID},
        "Confirm that the items have been exchanged?", "Trade marked as exchanged"),
    (POST_TYPE_TRADE, ROLE_BUYER, "Confirm Exchange"): _by_status(
        'trade', STATUS_COMPLETED, {STATUS_PICKED_UP},
        "Confirm the exchange? This completes the trade.", "Trade completed!"),

    # Emergency lending
    (POST_TYPE_EMERGENCY, ROLE_SELLER, "Item Picked Up"): _by_step(
        'emergency', 'pickedup', STATUS_PICKED_UP, {STATUS_ACCEPTED},
        "Confirm that the borrower has picked up the item?", "Item marked as picked up"),
    (POST_TYPE_EMERGENCY, ROLE_BUYER, "Return Item"): _by_step(
        'emergency', 'returned', STATUS_RETURNED, {STATUS_PICKED_UP},
        "Confirm that you have returned the item?", "Item marked as returned"),
    (POST_TYPE_EMERGENCY, ROLE_SELLER, "Confirm Return"): _by_step(
        'emergency', 'confirm-return', STATUS_COMPLETED, {STATUS_RETURNED},
        "Confirm that you got the item back? This completes the loan.",
        "Return confirmed. Loan completed!"),

    # Giveaway
    (POST_TYPE_GIVEAWAY, ROLE_SELLER, "Mark as Picked Up"): _by_step(
        'giveaway', 'pickedup', STATUS_PICKED_UP, {STATUS_ACCEPTED},
        "Confirm that the item has been picked up?", "Item marked as picked up"),
    (POST_TYPE_GIVEAWAY, ROLE_SELLER, "Mark as Shipped"): _by_step(
        'giveaway', 'shipped', STATUS_SHIPPED, {STATUS_ACCEPTED},
        "Confirm that the item has been shipped?", "Item marked as shipped"),
    (POST_TYPE_GIVEAWAY, ROLE_BUYER, "Mark as Received"): _by_step(
        'giveaway', 'received', STATUS_COMPLETED, {STATUS_PICKED_UP},
        "Confirm that you received the item? This completes the giveaway.",
        "Item received. Giveaway completed!"),
    (POST_TYPE_GIVEAWAY, ROLE_BUYER, "Received"): _by_step(
        'giveaway', 'received', STATUS_COMPLETED, {STATUS_SHIPPED},
        "Confirm that you received the item? This completes the giveaway.",
        "Item received. Giveaway completed!"),
})

# Labels rendered as a disabled badge
DISABLED_LABELS = {
    POST_TYPE_SALE: {
        "Waiting for Seller", "Waiting for Confirmation", "Waiting for Delivery",
        "Waiting for Payment", "On Hold", "Completed", "Cancelled",
    },
    POST_TYPE_RENT: {
        "Waiting for Pickup", "Waiting for Payment", "On Rent",
        "Waiting for Review", "Completed", "Cancelled",
    },
    POST_TYPE_TRADE: {
        "Waiting for Buyer", "Waiting for Seller", "Waiting for Confirmation",
        "Waiting for Payment", "On Hold", "Completed", "Cancelled",
    },
    POST_TYPE_EMERGENCY: {
        "Waiting for Confirmation", "Waiting for Seller", "Waiting for Pickup",
        "On Loan", "Waiting for Return", "Completed", "Cancelled",
    },
    POST_TYPE_GIVEAWAY: {
        "Waiting for Pickup", "Waiting for Buyer", "Completed", "Cancelled",
    },
}
DISABLED_LABELS[POST_TYPE_PASABUY] = DISABLED_LABELS[POST_TYPE_SALE]


# --- CONTROL DISPOSITION ---

class Control:
    """How a client should render the primary action for one viewer."""

    COMPOSITE = 'composite'
    PAYMENT = 'payment'
    DISABLED = 'disabled'
    CONFIRM = 'confirm'
    STATIC = 'static'

    def __init__(self, kind, label, endpoint=None, new_status=None, confirm_text=None,
                 success_message=None, reload=False):
        self.kind = kind
        self.label = label
        self.endpoint = endpoint
        self.new_status = new_status
        self.confirm_text = confirm_text
        self.success_message = success_message
        self.reload = reload

    @property
    def actionable(self):
        return self.kind in (self.COMPOSITE, self.PAYMENT, self.CONFIRM)

    def to_dict(self):
        return {
            'kind': self.kind,
            'label': self.label,
            'endpoint': self.endpoint,
            'new_status': self.new_status,
            'confirm_text': self.confirm_text,
            'success_message': self.success_message,
            'reload': self.reload,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            data['kind'],
            data.get('label', ''),
            endpoint=data.get('endpoint'),
            new_status=data.get('new_status'),
            confirm_text=data.get('confirm_text'),
            success_message=data.get('success_message'),
            reload=bool(data.get('reload')),
        )

    def __eq__(self, other):
        return isinstance(other, Control) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"<Control {self.kind} {self.label!r}>"


def describe_control(post_type, role, status, payment_method=None, fulfillment_method=None,
                     payable=False):
    """Pick the control for the viewer's current label."""
    label = resolve_action(post_type, role, status, payment_method, fulfillment_method)
    pending = (status or '').lower() == STATUS_PENDING.lower()

    if pending and role == ROLE_SELLER:
        return Control(Control.COMPOSITE, "Action")
    if label == PAY_NOW_LABEL:
        return Control(Control.PAYMENT, label)
    if label in DISABLED_LABELS.get(post_type, ()):
        return Control(Control.DISABLED, label)
    if not label and role == ROLE_BUYER:
        # The seller answers a new request before anything can be paid
        if pending:
            return Control(Control.DISABLED, "Waiting for Seller")
        if payable:
            return Control(Control.PAYMENT, PAY_NOW_LABEL)

    transition = TRANSITIONS.get((post_type, role, label)) if label else None
    if transition is not None:
        return Control(
            Control.CONFIRM,
            label,
            endpoint=transition.endpoint,
            new_status=transition.new_status if transition.sends_status else None,
            confirm_text=transition.confirm_text,
            success_message=transition.success_message,
            reload=transition.new_status == STATUS_COMPLETED,
        )
    return Control(Control.STATIC, label)


def describe_transaction_control(txn, role):
    return describe_control(
        txn.post_type, role, txn.status, txn.payment_method, txn.fulfillment_method,
        payable=role == ROLE_BUYER and is_payable(txn),
    )


# --- SIDE EFFECTS ---

def add_system_message(txn, sender_id, body):
    """Status card in the conversation the transaction was opened from."""
    if not txn.conversation_id:
        return None
    message = Message(
        conversation_id=txn.conversation_id,
        sender_id=sender_id,
        type='system',
        body=body,
        transaction_id=txn.id,
    )
    db.session.add(message)
    return message


def notify_user(user_id, message, related_id=None, type='transaction_update'):
    notification = Notification(user_id=user_id, message=message, type=type, related_id=related_id)
    db.session.add(notification)
    return notification


def record_status_change(txn, actor_id):
    """System message and counterparty notification for the transaction's new status."""
    add_system_message(txn, actor_id, f"Transaction {txn.status}")
    counterparty = txn.seller_id if actor_id == txn.buyer_id else txn.buyer_id
    title = txn.post.title if txn.post else txn.reference_code
    notify_user(counterparty, f"{title}: transaction is now {txn.status}", related_id=txn.id)


def _finish(txn, actor_id, new_status):
    old_status = txn.status
    txn.status = new_status
    txn.updated_at = datetime.utcnow()

    if new_status == STATUS_COMPLETED:
        release_escrow(txn)
        if txn.post_type in (POST_TYPE_SALE, POST_TYPE_GIVEAWAY):
            post = db.session.get(Post, txn.post_id)
            if post:
                post.status = POST_STATUS_SOLD
    elif new_status == STATUS_CANCELLED:
        refund_escrow(txn)

    record_status_change(txn, actor_id)
    logger.info(f"TRANSITION: Transaction {txn.id} ({txn.post_type}) {old_status} -> {new_status} by user {actor_id}")


def _load_for_update(txn_id, actor_id):
    txn = Transaction.query.with_for_update().filter_by(id=txn_id).first()
    if txn is None:
        raise TransitionError("Transaction not found", 404)
    role = txn.role_of(actor_id)
    if role is None:
        raise TransitionError("You are not a party to this transaction", 403)
    if txn.status in TERMINAL_STATUSES:
        raise TransitionError(f"Transaction is already {txn.status}", 409)
    return txn, role


def apply_transition(txn_id, actor_id, endpoint, new_status=None):
    """
    Perform the status update requested at `endpoint` by `actor_id`.

    The row is locked, the actor must be the party the step belongs to and
    the current status must be one the step starts from. Does not commit.
    """
    txn, role = _load_for_update(txn_id, actor_id)

    candidates = [
        (key, t) for key, t in TRANSITIONS.items()
        if t.endpoint == endpoint and key[0] == txn.post_type
        and (not t.sends_status or t.new_status == new_status)
    ]
    if not candidates:
        raise TransitionError(f"Invalid status update for a {txn.post_type} transaction")

    mine = [(key, t) for key, t in candidates if key[1] == role]
    if not mine:
        other = 'seller' if role == ROLE_BUYER else 'buyer'
        raise TransitionError(f"Only the {other} can perform this action", 403)

    label = resolve_action(txn.post_type, role, txn.status, txn.payment_method, txn.fulfillment_method)
    for key, t in mine:
        if txn.status in t.from_statuses and (t.decision or key[2] == label):
            _finish(txn, actor_id, t.new_status)
            return txn

    target = mine[0][1].new_status
    raise TransitionError(f"Cannot change status from {txn.status} to {target}", 409)


def respond_to_transaction(txn_id, actor_id, decision):
    """Seller's accept/reject. Accept needs Pending; reject works from any open status."""
    if decision not in ('accept', 'reject'):
        raise TransitionError("Decision must be 'accept' or 'reject'")

    txn, role = _load_for_update(txn_id, actor_id)
    if role != ROLE_SELLER:
        raise TransitionError("Only the seller can accept or reject this transaction", 403)

    if decision == 'accept':
        if txn.status != STATUS_PENDING:
            raise TransitionError(f"Cannot accept a transaction that is {txn.status}", 409)
        _finish(txn, actor_id, STATUS_ACCEPTED)
    else:
        _finish(txn, actor_id, STATUS_CANCELLED)
    return txn
