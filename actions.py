"""
Next-action labels for EduCart transactions.

Each listing type has its own resolver mapping the viewer's role
('Purchases' for the buyer, 'Sales' for the seller), the transaction
status and, where the flow depends on them, the payment and fulfillment
methods to the label shown on the transaction card. An empty string means
no action is available for that combination.
"""
from constants import (
    ROLE_BUYER, ROLE_SELLER,
    PAYMENT_CASH, PAYMENT_ONLINE,
    FULFILLMENT_MEETUP, FULFILLMENT_DELIVERY,
    POST_TYPE_SALE, POST_TYPE_RENT, POST_TYPE_TRADE,
    POST_TYPE_EMERGENCY, POST_TYPE_PASABUY, POST_TYPE_GIVEAWAY,
)


def compute_sale_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    if not status:
        return ""
    s = status.lower()

    # Cash on hand at a meetup: buyer confirms receipt to complete
    if payment_method == PAYMENT_CASH and fulfillment_method == FULFILLMENT_MEETUP:
        if role == ROLE_BUYER:
            return {
                'accepted': "Item Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'accepted': "Waiting for Confirmation",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    if payment_method == PAYMENT_ONLINE and fulfillment_method == FULFILLMENT_MEETUP:
        if role == ROLE_BUYER:
            return {
                'paid': "Item Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'paid': "Waiting for Confirmation",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    if payment_method == PAYMENT_ONLINE and fulfillment_method == FULFILLMENT_DELIVERY:
        if role == ROLE_BUYER:
            return {
                'paid': "Waiting for Delivery",
                'pickedup': "Order Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'paid': "Order Picked Up",
                'pickedup': "On Hold",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    return ""


def compute_rent_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    """Cash rentals go straight from Accepted to pickup; online rentals are paid first."""
    if not status:
        return ""
    s = status.lower()

    if payment_method == PAYMENT_CASH:
        if role == ROLE_BUYER:
            return {
                'accepted': "Waiting for Pickup",
                'pickedup': "Return Item",
                'returned': "Waiting for Review",
                'completed': "Completed",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'accepted': "Mark as Picked Up",
                'pickedup': "On Rent",
                'returned': "Confirm Return",
                'completed': "Completed",
            }.get(s, "")

    if payment_method == PAYMENT_ONLINE:
        if role == ROLE_BUYER:
            return {
                'accepted': "Pay Now",
                'paid': "Waiting for Pickup",
                'pickedup': "Return Item",
                'returned': "Waiting for Review",
                'completed': "Completed",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'accepted': "Waiting for Payment",
                'paid': "Mark as Picked Up",
                'pickedup': "On Rent",
                'returned': "Confirm Return",
                'completed': "Completed",
            }.get(s, "")

    return ""


def compute_trade_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    """
    A trade with no payment method is a pure item swap. Cash on hand
    follows the same steps; an online top-up is paid before the exchange.
    """
    if not status:
        return ""
    s = status.lower()

    if not payment_method or payment_method == PAYMENT_CASH:
        if role == ROLE_BUYER:
            return {
                'accepted': "Confirm Item Received",
                'received': "Waiting for Seller",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'accepted': "Waiting for Buyer",
                'received': "Confirm Item Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    if payment_method == PAYMENT_ONLINE:
        if role == ROLE_BUYER:
            return {
                'accepted': "Pay Now",
                'paid': "Waiting for Seller",
                'pickedup': "Confirm Exchange",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'paid': "Mark as Exchanged",
                'pickedup': "On Hold",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    return ""


def compute_emergency_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    if not status:
        return ""
    s = status.lower()

    # Borrower
    if role == ROLE_BUYER:
        return {
            'accepted': "Waiting for Confirmation",
            'pickedup': "Return Item",
            'returned': "Waiting for Seller",
            'completed': "Completed",
        }.get(s, "")

    # Lender
    if role == ROLE_SELLER:
        return {
            'accepted': "Item Picked Up",
            'pickedup': "On Loan",
            'returned': "Confirm Return",
            'completed': "Completed",
        }.get(s, "")

    return ""


def compute_pasabuy_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    if not status:
        return ""
    s = status.lower()

    if payment_method == PAYMENT_ONLINE and fulfillment_method == FULFILLMENT_DELIVERY:
        if role == ROLE_BUYER:
            return {
                'pending': "Pay Now",
                'paid': "Waiting for Delivery",
                'pickedup': "Order Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'pending': "Action",
                'paid': "Order Picked Up",
                'pickedup': "On Hold",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    if payment_method == PAYMENT_CASH and fulfillment_method == FULFILLMENT_MEETUP:
        if role == ROLE_BUYER:
            return {
                'pending': "Waiting for Seller",
                'accepted': "Item Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'pending': "Action",
                'accepted': "Waiting for Confirmation",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    if payment_method == PAYMENT_ONLINE and fulfillment_method == FULFILLMENT_MEETUP:
        if role == ROLE_BUYER:
            return {
                'pending': "Waiting for Seller",
                'accepted': "Pay Now",
                'paid': "Item Received",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")
        if role == ROLE_SELLER:
            return {
                'pending': "Action",
                'accepted': "Waiting for Payment",
                'paid': "Waiting for Confirmation",
                'completed': "Completed",
                'cancelled': "Cancelled",
            }.get(s, "")

    return ""


def compute_giveaway_action_label(role, status=None, payment_method=None, fulfillment_method=None):
    if not status:
        return ""
    s = status.lower()

    if role == ROLE_BUYER:
        return {
            'accepted': "Waiting for Pickup",
            'pickedup': "Mark as Received",
            'shipped': "Received",
            'completed': "Completed",
        }.get(s, "")

    if role == ROLE_SELLER:
        if s == 'accepted':
            if fulfillment_method == FULFILLMENT_MEETUP:
                return "Mark as Picked Up"
            if fulfillment_method == FULFILLMENT_DELIVERY:
                return "Mark as Shipped"
            return ""
        return {
            'pickedup': "Waiting for Buyer",
            'completed': "Completed",
        }.get(s, "")

    return ""


RESOLVERS = {
    POST_TYPE_SALE: compute_sale_action_label,
    POST_TYPE_RENT: compute_rent_action_label,
    POST_TYPE_TRADE: compute_trade_action_label,
    POST_TYPE_EMERGENCY: compute_emergency_action_label,
    POST_TYPE_PASABUY: compute_pasabuy_action_label,
    POST_TYPE_GIVEAWAY: compute_giveaway_action_label,
}


def resolve_action(post_type, role, status=None, payment_method=None, fulfillment_method=None):
    """Return the next-action label for a transaction, or "" when there is none."""
    resolver = RESOLVERS.get(post_type)
    if resolver is None:
        return ""
    return resolver(role, status, payment_method, fulfillment_method)
