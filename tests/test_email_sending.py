"""
Integration tests for email sending functionality.

These test the email sending system including:
- send_email function with and without an API key
- Email template wrapping
- Plain text generation
- Transaction status emails

Run: pytest tests/test_email_sending.py -v
"""
import pytest
from unittest.mock import patch
import app
from app import send_email, wrap_email_template, html_to_text, email_status_change
from conftest import make_transaction


@pytest.mark.integration
class TestSendEmailFunction:
    """Test the send_email function"""

    @patch('app.resend.Emails.send')
    def test_send_email_basic(self, mock_send, client, buyer):
        """Test basic email sending"""
        app.resend.api_key = 'test_api_key'  # Set API key for test
        mock_send.return_value = {'id': 'test_email_id'}

        result = send_email(
            to_email=buyer.email,
            subject='Test Subject',
            html_content='<p>Test content</p>'
        )

        assert result == True
        mock_send.assert_called_once()
        call_args = mock_send.call_args[0][0]
        assert call_args['to'] == buyer.email
        assert call_args['subject'] == 'Test Subject'
        assert call_args['from'] == 'EduCart <no-reply@educart.ph>'
        assert '<p>Test content</p>' in call_args['html']
        assert call_args['text'] == 'Test content'

    @patch('app.resend.Emails.send')
    def test_send_email_no_api_key(self, mock_send, client, buyer):
        """Test that send_email returns False when API key is missing"""
        app.resend.api_key = None

        assert send_email(buyer.email, 'Test Subject', '<p>Test</p>') == False
        mock_send.assert_not_called()

    @patch('app.resend.Emails.send')
    def test_send_email_custom_sender(self, mock_send, client, buyer):
        app.resend.api_key = 'test_api_key'

        send_email(buyer.email, 'Hi', '<p>x</p>', from_email='Support <support@educart.ph>')

        assert mock_send.call_args[0][0]['from'] == 'Support <support@educart.ph>'

    @patch('app.resend.Emails.send')
    def test_send_email_provider_failure(self, mock_send, client, buyer):
        """A provider error is logged and reported as False"""
        app.resend.api_key = 'test_api_key'
        mock_send.side_effect = Exception('Resend is down')

        assert send_email(buyer.email, 'Hi', '<p>x</p>') == False


@pytest.mark.unit
class TestEmailFormatting:
    """Template wrapper and plain-text fallback"""

    def test_wrap_email_template(self):
        html = wrap_email_template('<h1>Hello</h1>')
        assert html.startswith('<!DOCTYPE html>')
        assert '<h1>Hello</h1>' in html
        assert 'EduCart' in html

    def test_html_to_text(self):
        text = html_to_text('<h2>Request accepted</h2>\n\n\n<p>Tom &amp; Jerry&#39;s notes</p>')
        assert text == "Request accepted\n\nTom & Jerry's notes"


@pytest.mark.integration
class TestStatusEmails:
    """Emails sent when a transaction changes state"""

    @patch('app.resend.Emails.send')
    def test_accept_emails_buyer(self, mock_send, seller_client, sale_post, buyer):
        app.resend.api_key = 'test_api_key'
        txn = make_transaction(sale_post, buyer, payment_method='Cash on Hand')

        response = seller_client.post(f'/api/transactions/{txn.id}/respond', json={'decision': 'accept'})

        assert response.status_code == 200
        mock_send.assert_called_once()
        email = mock_send.call_args[0][0]
        assert email['to'] == buyer.email
        assert 'accepted' in email['subject']
        assert txn.reference_code in email['html']

    @patch('app.resend.Emails.send')
    def test_completion_emails_both_parties(self, mock_send, client, sale_post, buyer, seller):
        app.resend.api_key = 'test_api_key'
        txn = make_transaction(sale_post, buyer, status='Completed')

        email_status_change(txn)

        recipients = [c[0][0]['to'] for c in mock_send.call_args_list]
        assert recipients == [buyer.email, seller.email]

    @patch('app.resend.Emails.send')
    def test_other_statuses_send_nothing(self, mock_send, client, sale_post, buyer):
        app.resend.api_key = 'test_api_key'
        email_status_change(make_transaction(sale_post, buyer, status='Paid'))
        mock_send.assert_not_called()
