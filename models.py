from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

db = SQLAlchemy()


class University(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    abbreviation = db.Column(db.String(20), nullable=False)
    domain = db.Column(db.String(100), nullable=True)  # e.g. 'up.edu.ph'; Student/Faculty emails must end with it
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    users = db.relationship('User', backref='university', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'abbreviation': self.abbreviation,
            'domain': self.domain,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class UniversityRequest(db.Model):
    """A request from a visitor to add their school to EduCart"""
    id = db.Column(db.Integer, primary_key=True)
    university_name = db.Column(db.String(150), nullable=False)
    domain = db.Column(db.String(100), nullable=True)
    requester_email = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(20), default='pending')  # 'pending', 'approved', 'rejected'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'university_name': self.university_name,
            'domain': self.domain,
            'requester_email': self.requester_email,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(100), nullable=True)

    # 'Student', 'Faculty' or 'Alumni'
    role = db.Column(db.String(20), nullable=False, default='Student')
    university_id = db.Column(db.Integer, db.ForeignKey('university.id'), nullable=True)

    # ID VERIFICATION
    verification_status = db.Column(db.String(20), default='Pending')
    id_image_url = db.Column(db.String(300), nullable=True)

    is_admin = db.Column(db.Boolean, default=False)

    # MODERATION
    warning_count = db.Column(db.Integer, default=0)
    is_suspended = db.Column(db.Boolean, default=False)
    suspended_at = db.Column(db.DateTime, nullable=True)

    date_joined = db.Column(db.DateTime, default=datetime.utcnow)
    posts = db.relationship('Post', backref='owner', lazy=True)
    wallet = db.relationship('Wallet', backref='user', uselist=False, lazy=True)

    @property
    def display_name(self):
        return self.full_name or self.email.split('@')[0]

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'role': self.role,
            'university_id': self.university_id,
            'verification_status': self.verification_status,
            'is_admin': bool(self.is_admin),
            'is_suspended': bool(self.is_suspended),
        }


class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    posts = db.relationship('Post', backref='category', lazy=True)


class Post(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    university_id = db.Column(db.Integer, db.ForeignKey('university.id'), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=True)

    post_type = db.Column(db.String(30), nullable=False)  # see constants.POST_TYPES
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    condition = db.Column(db.String(30), nullable=True)
    price = db.Column(db.Float, nullable=True)  # Rent: price per day
    service_fee = db.Column(db.Float, nullable=True)  # PasaBuy errand fee
    image_urls = db.Column(db.JSON, default=list)

    # PICKUP (seller side of the delivery-fee computation)
    pickup_location = db.Column(db.String(200), nullable=True)
    pickup_lat = db.Column(db.Float, nullable=True)
    pickup_lng = db.Column(db.Float, nullable=True)

    status = db.Column(db.String(20), default='Listed')  # 'Listed', 'Unlisted', 'Sold'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    pasabuy_items = db.relationship('PasaBuyItem', backref='post', lazy=True, cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'seller': self.owner.display_name if self.owner else None,
            'university_id': self.university_id,
            'category_id': self.category_id,
            'category': self.category.name if self.category else None,
            'post_type': self.post_type,
            'title': self.title,
            'description': self.description,
            'condition': self.condition,
            'price': self.price,
            'service_fee': self.service_fee,
            'image_urls': self.image_urls or [],
            'pickup_location': self.pickup_location,
            'pickup_lat': self.pickup_lat,
            'pickup_lng': self.pickup_lng,
            'status': self.status,
            'pasabuy_items': [i.to_dict() for i in self.pasabuy_items],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PasaBuyItem(db.Model):
    """A product a PasaBuy seller offers to shop for"""
    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('post.id'), nullable=False)
    product_name = db.Column(db.String(120), nullable=False)
    price = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {'id': self.id, 'product_name': self.product_name, 'price': self.price}


class Conversation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey('post.id'), nullable=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    post = db.relationship('Post')
    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])
    messages = db.relationship('Message', backref='conversation', lazy=True,
                               order_by='Message.created_at')

    def has_member(self, user_id):
        return user_id in (self.buyer_id, self.seller_id)


class Message(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('conversation.id'), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    type = db.Column(db.String(20), default='text')  # 'text' or 'system'
    body = db.Column(db.Text, nullable=False)
    # System messages point at the transaction they render as a status card
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    transaction = db.relationship('Transaction')


class Transaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    reference_code = db.Column(db.String(20), unique=True, nullable=False)
    post_id = db.Column(db.Integer, db.ForeignKey('post.id'), nullable=False)
    conversation_id = db.Column(db.Integer, db.ForeignKey('conversation.id'), nullable=True, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)

    post_type = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), default='Pending', nullable=False)
    payment_method = db.Column(db.String(30), nullable=True)  # None for pure trades, giveaways, lending
    fulfillment_method = db.Column(db.String(20), nullable=False, default='Meetup')

    # AMOUNTS
    price = db.Column(db.Float, nullable=True)
    cash_added = db.Column(db.Float, nullable=True)  # Trade top-up
    service_fee = db.Column(db.Float, nullable=True)  # PasaBuy
    items_total = db.Column(db.Float, nullable=True)  # PasaBuy
    pasabuy_items = db.Column(db.JSON, nullable=True)
    offered_item = db.Column(db.String(200), nullable=True)  # Trade

    # RENT / LENDING PERIOD
    rent_start_date = db.Column(db.Date, nullable=True)
    rent_end_date = db.Column(db.Date, nullable=True)
    rent_days = db.Column(db.Integer, nullable=True)

    # MEETUP
    meetup_location = db.Column(db.String(200), nullable=True)
    meetup_date = db.Column(db.String(20), nullable=True)
    meetup_time = db.Column(db.String(20), nullable=True)

    # DELIVERY
    delivery_address = db.Column(db.String(200), nullable=True)
    delivery_lat = db.Column(db.Float, nullable=True)
    delivery_lng = db.Column(db.Float, nullable=True)
    delivery_distance_km = db.Column(db.Float, nullable=True)
    delivery_fee = db.Column(db.Float, nullable=True)

    # SETTLEMENT
    amount_paid = db.Column(db.Float, nullable=True)  # Held in the seller's escrow until completion
    paid_via = db.Column(db.String(20), nullable=True)  # 'wallet' or 'gcash'
    checkout_session_id = db.Column(db.String(120), nullable=True)
    escrow_released = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    post = db.relationship('Post')
    buyer = db.relationship('User', foreign_keys=[buyer_id])
    seller = db.relationship('User', foreign_keys=[seller_id])

    def role_of(self, user_id):
        """'Purchases' for the buyer, 'Sales' for the seller, None for anyone else."""
        if user_id == self.buyer_id:
            return 'Purchases'
        if user_id == self.seller_id:
            return 'Sales'
        return None

    @property
    def is_terminal(self):
        return self.status in ('Completed', 'Cancelled')

    def to_dict(self):
        return {
            'id': self.id,
            'reference_code': self.reference_code,
            'post_id': self.post_id,
            'conversation_id': self.conversation_id,
            'buyer_id': self.buyer_id,
            'seller_id': self.seller_id,
            'post_type': self.post_type,
            'title': self.post.title if self.post else None,
            'status': self.status,
            'payment_method': self.payment_method,
            'fulfillment_method': self.fulfillment_method,
            'price': self.price,
            'cash_added': self.cash_added,
            'service_fee': self.service_fee,
            'items_total': self.items_total,
            'pasabuy_items': self.pasabuy_items,
            'offered_item': self.offered_item,
            'rent_start_date': self.rent_start_date.isoformat() if self.rent_start_date else None,
            'rent_end_date': self.rent_end_date.isoformat() if self.rent_end_date else None,
            'rent_days': self.rent_days,
            'meetup_location': self.meetup_location,
            'meetup_date': self.meetup_date,
            'meetup_time': self.meetup_time,
            'delivery_address': self.delivery_address,
            'delivery_distance_km': self.delivery_distance_km,
            'delivery_fee': self.delivery_fee,
            'amount_paid': self.amount_paid,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Wallet(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), unique=True, nullable=False)
    current_balance = db.Column(db.Float, default=0.0, nullable=False)
    escrow_balance = db.Column(db.Float, default=0.0, nullable=False)  # Seller funds awaiting completion


class WalletTransaction(db.Model):
    """Ledger row for every wallet movement. Negative amount = deduction."""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.String(30), nullable=False)
    status = db.Column(db.String(20), default='Completed')  # 'Pending' or 'Completed'
    description = db.Column(db.String(200), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)  # Transaction id, when related to one
    reference_code = db.Column(db.String(40), nullable=True, index=True)  # Cash-in / cash-out code
    provider_reference = db.Column(db.String(120), nullable=True)  # PayMongo source id for cash-ins
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'amount': self.amount,
            'type': self.type,
            'status': self.status,
            'description': self.description,
            'reference_id': self.reference_id,
            'reference_code': self.reference_code,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PlatformWalletTransaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.String(30), nullable=False)  # 'Commission'
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    message = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(40), default='transaction_update')
    related_id = db.Column(db.Integer, nullable=True)
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'message': self.message,
            'type': self.type,
            'related_id': self.related_id,
            'is_read': bool(self.is_read),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Review(db.Model):
    """A party's rating of the other side once a transaction is completed"""
    __table_args__ = (db.UniqueConstraint('transaction_id', 'reviewer_id', name='uq_review_transaction_reviewer'),)

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=False, index=True)
    reviewer_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    reviewee_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    rating = db.Column(db.Integer, nullable=False)  # 1-5 stars
    comment = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    reviewer = db.relationship('User', foreign_keys=[reviewer_id])

    def to_dict(self):
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'reviewer_id': self.reviewer_id,
            'reviewer_name': self.reviewer.display_name if self.reviewer else None,
            'reviewee_id': self.reviewee_id,
            'rating': self.rating,
            'comment': self.comment,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Report(db.Model):
    """A complaint about the other party of a transaction, resolved by an admin"""
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transaction.id'), nullable=False, index=True)
    reporter_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    reported_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    report_type = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(1000), nullable=True)
    status = db.Column(db.String(20), default='Pending')  # 'Pending' or 'Resolved'
    action_taken = db.Column(db.String(20), nullable=True)  # 'warned' or 'suspended'
    admin_notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    reporter = db.relationship('User', foreign_keys=[reporter_id])
    reported_user = db.relationship('User', foreign_keys=[reported_user_id])

    def to_dict(self):
        return {
            'id': self.id,
            'transaction_id': self.transaction_id,
            'reporter_id': self.reporter_id,
            'reporter_name': self.reporter.display_name if self.reporter else None,
            'reported_user_id': self.reported_user_id,
            'reported_name': self.reported_user.display_name if self.reported_user else None,
            'report_type': self.report_type,
            'description': self.description,
            'status': self.status,
            'action_taken': self.action_taken,
            'admin_notes': self.admin_notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class AppSetting(db.Model):
    """Simple key-value store for app-wide settings"""
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.String(200), nullable=False)

    @staticmethod
    def get(key, default=None):
        setting = AppSetting.query.filter_by(key=key).first()
        return setting.value if setting else default

    @staticmethod
    def set(key, value):
        setting = AppSetting.query.filter_by(key=key).first()
        if setting:
            setting.value = str(value)
        else:
            setting = AppSetting(key=key, value=str(value))
            db.session.add(setting)
        db.session.commit()
