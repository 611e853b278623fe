"""
Pytest configuration and fixtures for EduCart tests.

Fixtures are reusable test data/objects that tests can use.
Each test gets a fresh temporary SQLite database with a university,
a buyer and a seller (both with wallets), a category and a few listings.
"""
import pytest
import os
import tempfile
from datetime import date
from flask import g
from werkzeug.security import generate_password_hash

from app import app, db, limiter
from models import (
    User, University, Category, Post, PasaBuyItem, Conversation, Transaction, Wallet,
)
import realtime
import resend


@pytest.fixture(scope='function')
def client():
    """
    Create a test client for the application.

    This fixture:
    - Creates a temporary database file (SQLite)
    - Disables CSRF and rate limiting
    - Creates all database tables
    - Yields a test client you can use to make requests
    - Cleans up after the test
    """
    db_fd, db_path = tempfile.mkstemp()

    app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_path}'
    app.config['TESTING'] = True
    app.config['WTF_CSRF_ENABLED'] = False  # Disable CSRF for easier testing
    app.config['SECRET_KEY'] = 'test-secret-key'
    app.config['SERVER_NAME'] = 'localhost'
    app.config['RATELIMIT_ENABLED'] = False
    app.config['PAYMONGO_SECRET_KEY'] = 'sk_test_123'
    app.config['PAYMONGO_WEBHOOK_SECRET'] = 'whsk_test_123'
    app.config['MAPBOX_TOKEN'] = None
    limiter.enabled = False
    resend.api_key = None  # No real emails from tests

    with app.test_client() as client:
        with app.app_context():
            db.create_all()
            yield client
            db.session.remove()
            db.drop_all()

    realtime.feed = realtime.ChangeFeed()
    os.close(db_fd)
    os.unlink(db_path)


def login_as(client, user_id):
    """Point the test client's session at a user."""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user_id)
        sess['_fresh'] = True
    # Flask-Login caches the loaded user on g for the app context
    g.pop('_login_user', None)
    return client


def fresh(model, obj_id):
    """Re-read a row after requests have changed it."""
    db.session.expire_all()
    return db.session.get(model, obj_id)


def make_user(email, university=None, role='Student', balance=0.0, is_admin=False):
    user = User(
        email=email,
        password_hash=generate_password_hash('testpass123'),
        full_name=email.split('@')[0].title(),
        role=role,
        university_id=university.id if university else None,
        is_admin=is_admin,
    )
    db.session.add(user)
    db.session.flush()
    db.session.add(Wallet(user_id=user.id, current_balance=balance, escrow_balance=0.0))
    db.session.commit()
    return user


def make_post(owner, post_type='Sale', price=500.0, **kwargs):
    post = Post(
        user_id=owner.id,
        university_id=owner.university_id,
        post_type=post_type,
        title=kwargs.pop('title', f'Test {post_type} Item'),
        price=price,
        pickup_lat=kwargs.pop('pickup_lat', 14.6537),
        pickup_lng=kwargs.pop('pickup_lng', 121.0687),
        status='Listed',
        image_urls=[],
        **kwargs
    )
    db.session.add(post)
    db.session.commit()
    return post


def make_conversation(post, buyer):
    conversation = Conversation(post_id=post.id, buyer_id=buyer.id, seller_id=post.user_id)
    db.session.add(conversation)
    db.session.commit()
    return conversation


def make_transaction(post, buyer, status='Pending', payment_method=None,
                     fulfillment_method='Meetup', conversation=None, **kwargs):
    if conversation is None:
        conversation = make_conversation(post, buyer)
    txn = Transaction(
        reference_code=kwargs.pop('reference_code', f'TXN-T{post.id:03d}{buyer.id:03d}{Transaction.query.count():02d}'),
        post_id=post.id,
        conversation_id=conversation.id,
        buyer_id=buyer.id,
        seller_id=post.user_id,
        post_type=post.post_type,
        status=status,
        payment_method=payment_method,
        fulfillment_method=fulfillment_method,
        price=kwargs.pop('price', post.price),
        **kwargs
    )
    db.session.add(txn)
    db.session.commit()
    return txn


@pytest.fixture
def university(client):
    school = University(name='University of the Philippines Diliman', abbreviation='UPD', domain='up.edu.ph')
    db.session.add(school)
    db.session.commit()
    return school


@pytest.fixture
def seller(university):
    return make_user('seller@up.edu.ph', university)


@pytest.fixture
def buyer(university):
    return make_user('buyer@up.edu.ph', university, balance=1000.0)


@pytest.fixture
def admin_user(university):
    return make_user('admin@up.edu.ph', university, is_admin=True)


@pytest.fixture
def category(client):
    cat = Category(name='Books & Reviewers')
    db.session.add(cat)
    db.session.commit()
    return cat


@pytest.fixture
def sale_post(seller, category):
    return make_post(seller, 'Sale', 500.0, category_id=category.id)


@pytest.fixture
def pasabuy_post(seller):
    post = make_post(seller, 'PasaBuy', None, service_fee=30.0)
    post.pasabuy_items = [
        PasaBuyItem(product_name='Siomai Rice', price=60.0),
        PasaBuyItem(product_name='Milk Tea', price=90.0),
    ]
    db.session.commit()
    return post


@pytest.fixture
def conversation(sale_post, buyer):
    return make_conversation(sale_post, buyer)


@pytest.fixture
def buyer_client(client, buyer):
    """Test client logged in as the buyer."""
    return login_as(client, buyer.id)


@pytest.fixture
def seller_client(client, seller):
    """Test client logged in as the seller."""
    return login_as(client, seller.id)


@pytest.fixture
def admin_client(client, admin_user):
    """Test client logged in as an admin."""
    return login_as(client, admin_user.id)


@pytest.fixture
def rent_dates():
    return date(2026, 11, 2), date(2026, 11, 5)
