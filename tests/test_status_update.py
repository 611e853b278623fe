"""
Integration tests for the status-update routes and the seller's accept/reject.

Each listing type is walked through its happy path, and the server is
checked to refuse steps from the wrong party or the wrong status.
Run: pytest tests/test_status_update.py -v
"""
import pytest

import realtime
from app import db
from models import Notification, Post, Transaction, Message
from conftest import fresh, login_as, make_post, make_transaction, make_user

ONLINE, CASH = 'Online Payment', 'Cash on Hand'


def step(client, user, path, txn, new_status=None):
    payload = {'transactionId': txn.id}
    if new_status:
        payload['newStatus'] = new_status
    return login_as(client, user.id).post(path, json=payload)


def status_of(txn):
    return fresh(Transaction, txn.id).status


@pytest.mark.integration
class TestSaleSteps:
    """Sale and PasaBuy share the {transactionId, newStatus} body"""

    def test_delivery_sale_flow(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')

        response = step(client, seller, '/api/status-update/sale', txn, 'PickedUp')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'PickedUp'
        assert data['transaction']['label'] == "On Hold"

        response = step(client, buyer, '/api/status-update/sale', txn, 'Completed')
        assert response.status_code == 200
        assert status_of(txn) == 'Completed'
        assert fresh(Post, sale_post.id).status == 'Sold'

    def test_buyer_cannot_take_seller_step(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')
        response = step(client, buyer, '/api/status-update/sale', txn, 'PickedUp')
        assert response.status_code == 403
        assert response.get_json()['error'] == "Only the seller can perform this action"
        assert status_of(txn) == 'Paid'

    def test_step_from_wrong_status(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=ONLINE,
                               fulfillment_method='Delivery')
        response = step(client, seller, '/api/status-update/sale', txn, 'PickedUp')
        assert response.status_code == 409
        assert response.get_json()['error'] == "Cannot change status from Accepted to PickedUp"

    def test_unpaid_online_meetup_cannot_complete(self, client, sale_post, buyer):
        """The buyer has no Item Received action until the sale is paid"""
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=ONLINE)
        response = step(client, buyer, '/api/status-update/sale', txn, 'Completed')
        assert response.status_code == 409
        assert status_of(txn) == 'Accepted'

    def test_unknown_new_status(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE)
        response = step(client, seller, '/api/status-update/sale', txn, 'Shipped')
        assert response.status_code == 400

    def test_terminal_transaction_is_final(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, status='Completed', payment_method=CASH)
        response = step(client, buyer, '/api/status-update/sale', txn, 'Completed')
        assert response.status_code == 409
        assert response.get_json()['error'] == "Transaction is already Completed"

    def test_outsider_is_refused(self, client, university, sale_post, buyer):
        outsider = make_user('outsider@up.edu.ph', university)
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=CASH)
        response = step(client, outsider, '/api/status-update/sale', txn, 'Completed')
        assert response.status_code == 403

    def test_missing_transaction(self, client, buyer):
        response = login_as(client, buyer.id).post('/api/status-update/sale',
                                                   json={'transactionId': 9999, 'newStatus': 'Completed'})
        assert response.status_code == 404

    def test_missing_transaction_id(self, client, buyer):
        response = login_as(client, buyer.id).post('/api/status-update/sale', json={'newStatus': 'Completed'})
        assert response.status_code == 400

    def test_unknown_slug(self, client, buyer):
        response = login_as(client, buyer.id).post('/api/status-update/auction', json={'transactionId': 1})
        assert response.status_code == 404

    def test_type_mismatch(self, client, sale_post, buyer):
        """A sale cannot be moved through another type's endpoint"""
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=CASH)
        response = step(client, buyer, '/api/status-update/pasabuy', txn, 'Completed')
        assert response.status_code == 400

    def test_requires_login(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=CASH)
        response = client.post('/api/status-update/sale', json={'transactionId': txn.id, 'newStatus': 'Completed'})
        assert response.status_code == 401

    def test_pasabuy_cash_meetup(self, client, pasabuy_post, buyer):
        txn = make_transaction(pasabuy_post, buyer, status='Accepted', payment_method=CASH,
                               items_total=150.0, service_fee=30.0)
        response = step(client, buyer, '/api/status-update/pasabuy', txn, 'Completed')
        assert response.status_code == 200
        assert status_of(txn) == 'Completed'
        # PasaBuy listings stay up for the next order
        assert fresh(Post, pasabuy_post.id).status == 'Listed'


@pytest.mark.integration
class TestRentSteps:
    def test_cash_rent_flow(self, client, seller, buyer):
        post = make_post(seller, 'Rent', 100.0)
        txn = make_transaction(post, buyer, status='Pending', payment_method=CASH, rent_days=3)

        assert step(client, seller, '/api/status-update/rent/accept', txn).status_code == 200
        assert status_of(txn) == 'Accepted'
        assert step(client, seller, '/api/status-update/rent/pickedup', txn).status_code == 200
        assert status_of(txn) == 'PickedUp'
        assert step(client, buyer, '/api/status-update/rent/return', txn).status_code == 200
        assert status_of(txn) == 'Returned'

        response = step(client, seller, '/api/status-update/rent/confirm-return', txn)
        assert response.status_code == 200
        assert response.get_json()['transaction']['label'] == "Completed"
        assert status_of(txn) == 'Completed'
        assert fresh(Post, post.id).status == 'Listed'

    def test_online_rent_must_be_paid_before_pickup(self, client, seller, buyer):
        post = make_post(seller, 'Rent', 100.0)
        txn = make_transaction(post, buyer, status='Accepted', payment_method=ONLINE, rent_days=3)

        response = step(client, seller, '/api/status-update/rent/pickedup', txn)
        assert response.status_code == 409

        txn = fresh(Transaction, txn.id)
        txn.status = 'Paid'
        db.session.commit()
        assert step(client, seller, '/api/status-update/rent/pickedup', txn).status_code == 200

    def test_buyer_cannot_accept(self, client, seller, buyer):
        post = make_post(seller, 'Rent', 100.0)
        txn = make_transaction(post, buyer, status='Pending', payment_method=CASH, rent_days=1)
        response = step(client, buyer, '/api/status-update/rent/accept', txn)
        assert response.status_code == 403

    def test_unknown_step(self, client, seller, buyer):
        post = make_post(seller, 'Rent', 100.0)
        txn = make_transaction(post, buyer, status='Accepted', payment_method=CASH, rent_days=1)
        response = step(client, seller, '/api/status-update/rent/shipped', txn)
        assert response.status_code == 400


@pytest.mark.integration
class TestTradeSteps:
    def test_pure_trade_flow(self, client, seller, buyer):
        post = make_post(seller, 'Trade', None)
        txn = make_transaction(post, buyer, status='Pending', offered_item='Casio fx-991')

        assert step(client, seller, '/api/status-update/trade', txn, 'Accepted').status_code == 200
        assert step(client, buyer, '/api/status-update/trade', txn, 'Received').status_code == 200
        assert status_of(txn) == 'Received'
        assert step(client, seller, '/api/status-update/trade', txn, 'Completed').status_code == 200
        assert status_of(txn) == 'Completed'

    def test_seller_cannot_complete_before_buyer_confirms(self, client, seller, buyer):
        post = make_post(seller, 'Trade', None)
        txn = make_transaction(post, buyer, status='Accepted', offered_item='Casio fx-991')
        response = step(client, seller, '/api/status-update/trade', txn, 'Completed')
        assert response.status_code == 409

    def test_trade_with_cash_flow(self, client, seller, buyer):
        post = make_post(seller, 'Trade', None)
        txn = make_transaction(post, buyer, status='Paid', payment_method=ONLINE,
                               offered_item='Old phone', cash_added=200.0)
        assert step(client, seller, '/api/status-update/trade', txn, 'PickedUp').status_code == 200
        assert step(client, buyer, '/api/status-update/trade', txn, 'Completed').status_code == 200
        assert status_of(txn) == 'Completed'

    def test_seller_rejects_trade(self, client, seller, buyer):
        post = make_post(seller, 'Trade', None)
        txn = make_transaction(post, buyer, status='Pending', offered_item='Casio fx-991')
        response = step(client, seller, '/api/status-update/trade', txn, 'Cancelled')
        assert response.status_code == 200
        assert status_of(txn) == 'Cancelled'


@pytest.mark.integration
class TestLendingAndGiveawaySteps:
    def test_emergency_lending_flow(self, client, seller, buyer):
        post = make_post(seller, 'Emergency Lending', None)
        txn = make_transaction(post, buyer, status='Accepted')

        assert step(client, seller, '/api/status-update/emergency/pickedup', txn).status_code == 200
        assert step(client, buyer, '/api/status-update/emergency/returned', txn).status_code == 200
        assert step(client, seller, '/api/status-update/emergency/confirm-return', txn).status_code == 200
        assert status_of(txn) == 'Completed'

    def test_borrower_cannot_confirm_own_return(self, client, seller, buyer):
        post = make_post(seller, 'Emergency Lending', None)
        txn = make_transaction(post, buyer, status='Returned')
        response = step(client, buyer, '/api/status-update/emergency/confirm-return', txn)
        assert response.status_code == 403

    def test_giveaway_meetup_flow(self, client, seller, buyer):
        post = make_post(seller, 'Giveaway', None)
        txn = make_transaction(post, buyer, status='Accepted')

        assert step(client, seller, '/api/status-update/giveaway/pickedup', txn).status_code == 200
        assert step(client, buyer, '/api/status-update/giveaway/received', txn).status_code == 200
        assert status_of(txn) == 'Completed'
        assert fresh(Post, post.id).status == 'Sold'

    def test_giveaway_delivery_flow(self, client, seller, buyer):
        post = make_post(seller, 'Giveaway', None)
        txn = make_transaction(post, buyer, status='Accepted', fulfillment_method='Delivery')

        response = step(client, seller, '/api/status-update/giveaway/pickedup', txn)
        assert response.status_code == 409

        assert step(client, seller, '/api/status-update/giveaway/shipped', txn).status_code == 200
        assert status_of(txn) == 'Shipped'
        assert step(client, buyer, '/api/status-update/giveaway/received', txn).status_code == 200
        assert status_of(txn) == 'Completed'


@pytest.mark.integration
class TestSideEffects:
    """Messages, notifications and change events after a step"""

    def test_step_posts_system_message_and_notifies(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')
        step(client, seller, '/api/status-update/sale', txn, 'PickedUp')

        message = Message.query.filter_by(transaction_id=txn.id).order_by(Message.id.desc()).first()
        assert message.type == 'system'
        assert message.body == 'Transaction PickedUp'
        assert message.sender_id == seller.id

        notification = Notification.query.filter_by(user_id=buyer.id, related_id=txn.id).one()
        assert 'PickedUp' in notification.message
        assert Notification.query.filter_by(user_id=seller.id).count() == 0

    def test_step_publishes_change_event(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')
        with realtime.feed.subscribe(realtime.transaction_channel(txn.id)) as txn_sub, \
                realtime.feed.subscribe(realtime.conversation_channel(txn.conversation_id)) as convo_sub:
            step(client, seller, '/api/status-update/sale', txn, 'PickedUp')
            event = txn_sub.get(timeout=0)
            convo_event = convo_sub.get(timeout=0)

        assert event['type'] == 'UPDATE'
        assert event['payload']['status'] == 'PickedUp'
        assert convo_event['payload']['table'] == 'transactions'

    def test_refused_step_publishes_nothing(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')
        with realtime.feed.subscribe(realtime.transaction_channel(txn.id)) as sub:
            step(client, buyer, '/api/status-update/sale', txn, 'PickedUp')
            assert sub.get(timeout=0) is None


@pytest.mark.integration
class TestRespond:
    """POST /api/transactions/<id>/respond"""

    def test_accept(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, payment_method=CASH)
        response = login_as(client, seller.id).post(f'/api/transactions/{txn.id}/respond',
                                                    json={'decision': 'accept'})
        assert response.status_code == 200
        assert response.get_json()['status'] == 'Accepted'
        assert response.get_json()['transaction']['label'] == "Waiting for Confirmation"

    def test_accept_twice(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=CASH)
        response = login_as(client, seller.id).post(f'/api/transactions/{txn.id}/respond',
                                                    json={'decision': 'accept'})
        assert response.status_code == 409

    def test_buyer_cannot_respond(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, payment_method=CASH)
        response = login_as(client, buyer.id).post(f'/api/transactions/{txn.id}/respond',
                                                   json={'decision': 'accept'})
        assert response.status_code == 403

    def test_invalid_decision(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, payment_method=CASH)
        response = login_as(client, seller.id).post(f'/api/transactions/{txn.id}/respond',
                                                    json={'decision': 'maybe'})
        assert response.status_code == 400
        assert status_of(txn) == 'Pending'

    def test_cancelled_hidden_from_seller_list(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, payment_method=CASH)
        login_as(client, seller.id).post(f'/api/transactions/{txn.id}/respond', json={'decision': 'reject'})

        seller_rows = login_as(client, seller.id).get('/api/transactions?role=Sales').get_json()['transactions']
        assert seller_rows == []

        buyer_rows = login_as(client, buyer.id).get(
            '/api/transactions?role=Purchases&tab=cancelled').get_json()['transactions']
        assert [r['id'] for r in buyer_rows] == [txn.id]
        assert buyer_rows[0]['label'] == "Cancelled"
        assert buyer_rows[0]['control']['kind'] == 'disabled'


@pytest.mark.integration
class TestTransactionState:
    """GET /api/transactions/<id>/state"""

    def test_state_for_each_party(self, client, sale_post, buyer, seller):
        txn = make_transaction(sale_post, buyer, status='Paid', payment_method=ONLINE,
                               fulfillment_method='Delivery')

        seller_state = login_as(client, seller.id).get(f'/api/transactions/{txn.id}/state').get_json()
        assert seller_state['role'] == 'Sales'
        assert seller_state['label'] == "Order Picked Up"
        assert seller_state['control']['kind'] == 'confirm'
        assert seller_state['control']['new_status'] == 'PickedUp'

        buyer_state = login_as(client, buyer.id).get(f'/api/transactions/{txn.id}/state').get_json()
        assert buyer_state['role'] == 'Purchases'
        assert buyer_state['label'] == "Waiting for Delivery"
        assert buyer_state['control']['kind'] == 'disabled'
        assert buyer_state['can_pay'] is False

    def test_payable_state(self, client, sale_post, buyer):
        txn = make_transaction(sale_post, buyer, status='Accepted', payment_method=ONLINE)
        state = login_as(client, buyer.id).get(f'/api/transactions/{txn.id}/state').get_json()
        assert state['can_pay'] is True
        assert state['total'] == 500.0
        assert state['control']['kind'] == 'payment'

    def test_outsider_cannot_read_state(self, client, university, sale_post, buyer):
        outsider = make_user('outsider@up.edu.ph', university)
        txn = make_transaction(sale_post, buyer, payment_method=CASH)
        response = login_as(client, outsider.id).get(f'/api/transactions/{txn.id}/state')
        assert response.status_code == 403
