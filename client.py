"""
Python client for the EduCart JSON API.

EduCartClient wraps the HTTP calls. ActionControl drives one transaction's
primary action the way the transaction card does: waiting and terminal
labels never touch the network, state-advancing steps need an explicit
confirmation and a second activation while a request is running is
ignored. LiveTransaction keeps a transaction's label current by re-reading
the row whenever the change feed reports an update.
"""
import json
import logging

import httpx

from actions import resolve_action
from transitions import Control, describe_control

logger = logging.getLogger(__name__)


class ClientError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class EduCartClient:
    def __init__(self, base_url, timeout=15.0, http=None):
        self.http = http or httpx.Client(base_url=base_url, timeout=timeout)
        self.csrf_token = None

    def close(self):
        self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method, path, payload=None):
        headers = {}
        if self.csrf_token:
            headers['X-CSRFToken'] = self.csrf_token
        try:
            response = self.http.request(method, path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise ClientError("Network error. Please try again.")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            raise ClientError(body.get('error') or f"Request failed ({response.status_code})",
                              response.status_code)
        return body

    def fetch_csrf_token(self):
        self.csrf_token = self._request('GET', '/api/csrf-token')['csrf_token']
        return self.csrf_token

    def login(self, email, password):
        if not self.csrf_token:
            self.fetch_csrf_token()
        return self._request('POST', '/api/auth/login', {'email': email, 'password': password})

    def get_state(self, transaction_id):
        return self._request('GET', f'/api/transactions/{transaction_id}/state')

    def update_status(self, endpoint, transaction_id, new_status=None):
        payload = {'transactionId': transaction_id}
        if new_status:
            payload['newStatus'] = new_status
        return self._request('POST', endpoint, payload)

    def respond(self, transaction_id, decision):
        return self._request('POST', f'/api/transactions/{transaction_id}/respond', {'decision': decision})

    def pay_with_wallet(self, transaction_id, amount):
        return self._request('POST', '/api/wallet/pay', {'transactionId': transaction_id, 'amount': amount})

    def gcash_checkout(self, transaction_id, amount):
        return self._request('POST', '/api/payments/gcash', {'transactionId': transaction_id, 'amount': amount})

    def events(self, kind, object_id):
        """Yield change events from the SSE stream for one transaction or conversation."""
        with self.http.stream('GET', f'/api/realtime/{kind}/{object_id}', timeout=None) as response:
            for line in response.iter_lines():
                if line.startswith('data: '):
                    yield json.loads(line[len('data: '):])


class ActionControl:
    """
    Primary action button for one transaction.

    on_complete(transaction_id, reload) runs after a successful call;
    reload is True when the step completed the transaction.
    notify(level, message) surfaces success and error toasts.
    """

    def __init__(self, client, transaction_id, control, on_complete=None, notify=None):
        self.client = client
        self.transaction_id = transaction_id
        self.control = control
        self.on_complete = on_complete
        self.notify = notify
        self.in_flight = False

    @property
    def enabled(self):
        return self.control.actionable and not self.in_flight

    def _notify(self, level, message):
        if self.notify and message:
            self.notify(level, message)

    def activate(self, confirmed=False, decision=None, method='wallet', amount=None):
        """
        Run the control's action. Returns the server response, or None when
        nothing was sent or the call failed.
        """
        kind = self.control.kind
        if kind in (Control.DISABLED, Control.STATIC) or self.in_flight:
            return None
        if kind == Control.CONFIRM and not confirmed:
            return None
        if kind == Control.COMPOSITE and decision not in ('accept', 'reject'):
            return None
        if kind == Control.PAYMENT and amount is None:
            return None

        self.in_flight = True
        try:
            if kind == Control.COMPOSITE:
                result = self.client.respond(self.transaction_id, decision)
                message = "Transaction accepted" if decision == 'accept' else "Transaction rejected"
                reload = False
            elif kind == Control.PAYMENT:
                if method == 'gcash':
                    result = self.client.gcash_checkout(self.transaction_id, amount)
                    message = None
                else:
                    result = self.client.pay_with_wallet(self.transaction_id, amount)
                    message = "Payment successful"
                reload = False
            else:
                result = self.client.update_status(
                    self.control.endpoint, self.transaction_id, self.control.new_status)
                message = self.control.success_message
                reload = self.control.reload
        except ClientError as e:
            self._notify('error', e.message)
            return None
        finally:
            self.in_flight = False

        self._notify('success', message)
        if self.on_complete:
            self.on_complete(self.transaction_id, reload)
        return result


class LiveTransaction:
    """Client-side view of one transaction kept in step with the server."""

    def __init__(self, client, transaction_id):
        self.client = client
        self.transaction_id = transaction_id
        self.transaction = None
        self.role = None
        self.can_pay = False
        self.label = ""
        self.control = None

    def refresh(self):
        state = self.client.get_state(self.transaction_id)
        txn = state['transaction']
        self.transaction = txn
        self.role = state['role']
        self.can_pay = bool(state.get('can_pay'))
        self.label = resolve_action(
            txn['post_type'], self.role, txn['status'],
            txn.get('payment_method'), txn.get('fulfillment_method'))
        self.control = describe_control(
            txn['post_type'], self.role, txn['status'],
            txn.get('payment_method'), txn.get('fulfillment_method'),
            payable=self.can_pay)
        return self

    def handle_event(self, event):
        """Re-read the row for any change on this transaction. Returns True if refreshed."""
        payload = event.get('payload') or {}
        if payload.get('table', 'transactions') != 'transactions':
            return False
        if payload.get('id') != self.transaction_id:
            return False
        self.refresh()
        return True

    def listen(self, max_events=None):
        """Follow the transaction's change feed, refreshing on every event."""
        seen = 0
        for event in self.client.events('transaction', self.transaction_id):
            self.handle_event(event)
            seen += 1
            if max_events is not None and seen >= max_events:
                break
