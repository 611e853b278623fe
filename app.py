import os
import re
import time
import logging
import secrets
import html as html_module
from dotenv import load_dotenv
load_dotenv()  # Load .env for local dev

import resend
from datetime import datetime, date
from flask import Flask, request, jsonify, Response, send_from_directory
from werkzeug.utils import secure_filename
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from flask_migrate import Migrate
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import func, or_

# Import Models
from models import (
    db, User, University, UniversityRequest, Category, Post, PasaBuyItem,
    Conversation, Message, Transaction, WalletTransaction, PlatformWalletTransaction,
    Notification, AppSetting, Review, Report,
)

# Import Constants
from constants import (
    POST_TYPES, POST_TYPE_SLUGS, POST_STATUSES, POST_STATUS_LISTED, ITEM_CONDITIONS,
    POST_TYPE_SALE, POST_TYPE_RENT, POST_TYPE_TRADE, POST_TYPE_EMERGENCY,
    POST_TYPE_PASABUY, POST_TYPE_GIVEAWAY,
    ROLE_BUYER, ROLE_SELLER,
    STATUS_PENDING, STATUS_ACCEPTED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_TABS,
    PAYMENT_METHODS, FULFILLMENT_METHODS, FULFILLMENT_MEETUP,
    USER_ROLES, DOMAIN_CHECKED_ROLES,
    MAX_UPLOAD_SIZE, ALLOWED_EXTENSIONS, ALLOWED_MIME_TYPES, MAX_IMAGES_PER_POST,
    MIN_PRICE, MAX_PRICE, MAX_TITLE_LENGTH, MAX_DESCRIPTION_LENGTH, MAX_MESSAGE_LENGTH,
    MAX_EMAIL_LENGTH, MAX_NAME_LENGTH, MIN_PASSWORD_LENGTH,
    ITEMS_PER_PAGE, RATE_LIMIT_LOGIN, RATE_LIMIT_REGISTER, RATE_LIMIT_PAYMENT,
    DEFAULT_COMMISSION_RATE,
    MIN_RATING, MAX_RATING, MAX_REVIEW_LENGTH, MAX_REPORT_LENGTH,
    REPORT_STATUS_PENDING, REPORT_STATUS_RESOLVED, TRANSACTION_REPORT_TYPES,
)

import realtime
from actions import resolve_action
from payments import (
    PaymentError, quote_delivery, transaction_total, is_payable, get_wallet,
    pay_with_wallet, settle_payment, create_gcash_checkout, retrieve_checkout_session,
    checkout_session_paid, create_gcash_source, verify_webhook_signature,
    start_cash_in, complete_cash_in, cash_out, get_commission_rate,
)
from transitions import (
    TransitionError, apply_transition, respond_to_transaction, describe_transaction_control,
    add_system_message, notify_user, record_status_change,
)
from storage import init_storage, get_storage_instance, image_key, IMAGE_FOLDERS

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- APP CONFIGURATION ---
app = Flask(__name__)

# On Render, set this as an Environment Variable called 'SECRET_KEY'.
app.secret_key = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')

# 1. DATABASE CONFIGURATION
db_url = os.environ.get('DATABASE_URL')
if db_url:
    # SQLAlchemy needs 'postgresql://', some hosts hand out 'postgres://'
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
else:
    # Local fallback
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///educart.db'

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_SIZE * MAX_IMAGES_PER_POST

# 2. STORAGE CONFIGURATION
app.config['UPLOAD_FOLDER'] = os.environ.get('UPLOAD_FOLDER', 'static/uploads')
os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

# Initialize DB & Migrations
db.init_app(app)
migrate = Migrate(app, db)

# CSRF Protection (API clients fetch a token from /api/csrf-token; the PayMongo webhook is exempt)
csrf = CSRFProtect(app)

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=["2000 per day", "300 per hour"],
    storage_uri="memory://"
)

init_storage(app)

# --- EXTERNAL SERVICES CONFIGURATION ---

# PAYMONGO (GCASH)
app.config['PAYMONGO_SECRET_KEY'] = os.environ.get('PAYMONGO_SECRET_KEY')
app.config['PAYMONGO_WEBHOOK_SECRET'] = os.environ.get('PAYMONGO_WEBHOOK_SECRET')
app.config['PUBLIC_BASE_URL'] = os.environ.get('PUBLIC_BASE_URL')

# MAPBOX (road distance for delivery fees)
app.config['MAPBOX_TOKEN'] = os.environ.get('MAPBOX_TOKEN')

# RESEND (EMAIL)
resend.api_key = os.environ.get('RESEND_API_KEY')

# LOGIN MANAGER
login_manager = LoginManager()
login_manager.init_app(app)


@login_manager.user_loader
def load_user(user_id):
    user = db.session.get(User, int(user_id))
    # Suspension ends any session the user already has
    if user is not None and user.is_suspended:
        return None
    return user


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Not authenticated'}), 401


def public_base_url():
    return (app.config.get('PUBLIC_BASE_URL') or request.host_url).rstrip('/')


# --- EMAIL HELPERS ---

def html_to_text(html_content):
    """Convert HTML email content to plain text version"""
    text = re.sub(r'<[^>]+>', '', html_content)
    text = html_module.unescape(text)
    text = re.sub(r'\n\s*\n', '\n\n', text)
    return text.strip()


def wrap_email_template(html_content):
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin: 0; padding: 0; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; background-color: #f8fafc;">
    <table role="presentation" style="width: 100%; max-width: 600px; margin: 0 auto; background-color: #ffffff;">
        <tr>
            <td style="padding: 30px;">
                {html_content}
                <p style="margin-top: 40px; font-size: 0.85rem; color: #64748b;">EduCart, the campus marketplace</p>
            </td>
        </tr>
    </table>
</body>
</html>"""


def send_email(to_email, subject, html_content, from_email=None):
    """
    Sends an email using Resend.

    Returns:
        bool: True if email sent successfully, False otherwise
    """
    if not resend.api_key:
        logger.warning(f"Skipping email to {to_email}: RESEND_API_KEY not set.")
        return False

    sender = from_email or os.environ.get('RESEND_FROM_EMAIL', 'EduCart <no-reply@educart.ph>')
    email_data = {
        "from": sender,
        "to": to_email,
        "subject": subject,
        "html": wrap_email_template(html_content),
        "text": html_to_text(html_content)
    }

    try:
        resend.Emails.send(email_data)
        logger.info(f"Email sent to {to_email}: {subject}")
        return True
    except Exception as e:
        # Log error but don't crash the route
        logger.error(f"Failed to send email to {to_email}: {e}", exc_info=True)
        return False


def _transaction_email_html(txn, headline, body):
    title = txn.post.title if txn.post else "your item"
    return f"""
    <div style="font-family: sans-serif; padding: 20px; max-width: 500px;">
        <h2 style="color: #1e3a8a;">{headline}</h2>
        <p>{body}</p>
        <div style="background: #eff6ff; border: 1px solid #bfdbfe; border-radius: 8px; padding: 16px; margin: 20px 0;">
            <p style="margin: 0 0 8px;"><strong>Listing:</strong> {html_module.escape(title)}</p>
            <p style="margin: 0 0 8px;"><strong>Type:</strong> {txn.post_type}</p>
            <p style="margin: 0;"><strong>Reference:</strong> {txn.reference_code}</p>
        </div>
    </div>
    """


def email_status_change(txn):
    """Email the buyer when the seller responds and both parties on completion."""
    if txn.status == STATUS_ACCEPTED:
        send_email(txn.buyer.email, "Your request was accepted - EduCart",
                   _transaction_email_html(txn, "Request accepted", "The seller accepted your request. Open EduCart to continue."))
    elif txn.status == STATUS_CANCELLED:
        send_email(txn.buyer.email, "Your transaction was cancelled - EduCart",
                   _transaction_email_html(txn, "Transaction cancelled", "This transaction was cancelled. Any payment held in escrow was refunded to your wallet."))
    elif txn.status == STATUS_COMPLETED:
        for user in (txn.buyer, txn.seller):
            send_email(user.email, "Transaction completed - EduCart",
                       _transaction_email_html(txn, "Transaction completed", "Thanks for trading on EduCart!"))


# --- VALIDATION HELPERS ---

def validate_email(email):
    """Validate email format"""
    if not email or len(email) > MAX_EMAIL_LENGTH:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def validate_gcash_number(number):
    """
    Validate a Philippine mobile number registered to GCash.
    Accepts 09XXXXXXXXX, 639XXXXXXXXX and +63 9XX XXX XXXX.
    Returns (True, normalized '09...' number) or (False, error_message).
    """
    if not number or not str(number).strip():
        return False, "GCash number is required."
    digits = re.sub(r'\D', '', str(number))
    if len(digits) == 12 and digits.startswith('639'):
        digits = '0' + digits[2:]
    if len(digits) != 11 or not digits.startswith('09'):
        return False, "Please enter a valid GCash number (e.g. 09171234567)."
    return True, digits


def validate_file_upload(file):
    """Validate uploaded file: size, extension, and MIME type"""
    if not file or not file.filename:
        return False, "No file provided"

    file.seek(0, os.SEEK_END)
    file_size = file.tell()
    file.seek(0)

    if file_size > MAX_UPLOAD_SIZE:
        return False, f"File size exceeds {MAX_UPLOAD_SIZE / (1024*1024):.1f}MB limit"

    filename = secure_filename(file.filename)
    if not filename:
        return False, "Invalid filename"

    ext = filename.rsplit('.', 1)[1].lower() if '.' in filename else ''
    if ext not in ALLOWED_EXTENSIONS:
        return False, f"File type not allowed. Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    mime_type = file.content_type
    if mime_type and mime_type.lower() not in ALLOWED_MIME_TYPES:
        return False, "Invalid file type"

    return True, None


def validate_price(price, label="Price"):
    """Validate price is within acceptable range"""
    try:
        price_float = float(price)
        if price_float < MIN_PRICE or price_float > MAX_PRICE:
            return False, f"{label} must be between ₱{MIN_PRICE:.2f} and ₱{MAX_PRICE:,.2f}"
        return True, round(price_float, 2)
    except (ValueError, TypeError):
        return False, f"Invalid {label.lower()} format"


def validate_coordinates(lat, lng):
    try:
        lat, lng = float(lat), float(lng)
    except (ValueError, TypeError):
        return False, "Valid delivery coordinates are required."
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return False, "Valid delivery coordinates are required."
    return True, (lat, lng)


def parse_date(value):
    """Parse YYYY-MM-DD. Returns a date or None."""
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date()
    except (ValueError, TypeError):
        return None


def get_json():
    return request.get_json(silent=True) or {}


def generate_reference_code(prefix='TXN'):
    return f"{prefix}-{secrets.token_hex(4).upper()}"


# --- ERROR HANDLERS ---

@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 error: {request.url}")
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 error: {error}", exc_info=True)
    db.session.rollback()
    return jsonify({'error': 'An internal error occurred. Please try again later.'}), 500


@app.errorhandler(413)
def request_entity_too_large(error):
    logger.warning("413 error: File too large")
    return jsonify({'error': f"File is too large. Maximum size is {MAX_UPLOAD_SIZE // (1024*1024)}MB."}), 413


@app.errorhandler(CSRFError)
def csrf_error(error):
    return jsonify({'error': error.description}), 400


@app.errorhandler(TransitionError)
def transition_error(error):
    db.session.rollback()
    logger.info(f"Transition refused: {error.message}")
    return jsonify({'error': error.message}), error.status_code


@app.errorhandler(PaymentError)
def payment_error(error):
    db.session.rollback()
    logger.info(f"Payment refused: {error.message}")
    return jsonify({'error': error.message}), error.status_code


# =========================================================
# SECTION 1: SYSTEM ROUTES
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint for monitoring and load balancers"""
    try:
        db.session.execute(db.text('SELECT 1'))
        health_status = {
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.utcnow().isoformat()
        }
        if app.config.get('PAYMONGO_SECRET_KEY'):
            health_status['paymongo'] = 'configured'
        if resend.api_key:
            health_status['resend'] = 'configured'
        return jsonify(health_status), 200
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.utcnow().isoformat()
        }), 503


@app.route('/api/csrf-token')
def csrf_token():
    return jsonify({'csrf_token': generate_csrf()})


@app.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(app.config['UPLOAD_FOLDER'], filename)


# =========================================================
# SECTION 2: AUTH
# =========================================================

@app.route('/api/auth/register', methods=['POST'])
@limiter.limit(RATE_LIMIT_REGISTER)
def register():
    data = get_json()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    full_name = (data.get('full_name') or '').strip()
    role = (data.get('role') or '').strip()

    if not validate_email(email):
        return jsonify({'error': "Please provide a valid email address."}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({'error': f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}), 400
    if len(full_name) > MAX_NAME_LENGTH:
        return jsonify({'error': f"Name is too long (max {MAX_NAME_LENGTH} characters)."}), 400
    if role not in USER_ROLES:
        return jsonify({'error': "Please select a valid role."}), 400

    university = None
    if data.get('university_id') is not None:
        try:
            university = db.session.get(University, int(data.get('university_id')))
        except (ValueError, TypeError):
            university = None
    if university is None:
        return jsonify({'error': "Selected university is invalid."}), 400

    # Students and faculty sign up with their school email
    if role.lower() in DOMAIN_CHECKED_ROLES and university.domain:
        if not email.endswith(university.domain.lower()):
            return jsonify({'error': f"Email must end with {university.domain}"}), 400

    if User.query.filter_by(email=email).first():
        return jsonify({'error': "An account with this email already exists."}), 409

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        full_name=full_name or None,
        role=role,
        university_id=university.id,
    )
    db.session.add(user)
    db.session.flush()
    get_wallet(user.id)
    db.session.commit()
    login_user(user)
    logger.info(f"New user registered: {email} ({role}, {university.abbreviation})")
    return jsonify({'user': user.to_dict()}), 201


@app.route('/api/auth/login', methods=['POST'])
@limiter.limit(RATE_LIMIT_LOGIN)
def login():
    data = get_json()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    user = User.query.filter_by(email=email).first()
    if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        return jsonify({'error': "Invalid email or password."}), 401
    if user.is_suspended:
        logger.info(f"Refused login for suspended user {user.id}")
        return jsonify({'error': "Your account has been suspended."}), 403

    login_user(user)
    return jsonify({'user': user.to_dict()})


@app.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})


@app.route('/api/auth/me')
@login_required
def me():
    wallet = get_wallet(current_user.id)
    db.session.commit()
    return jsonify({'user': current_user.to_dict(), 'wallet': {
        'balance': wallet.current_balance, 'escrow': wallet.escrow_balance,
    }})


# =========================================================
# SECTION 3: PUBLIC DIRECTORY
# =========================================================

@app.route('/api/universities')
def list_universities():
    universities = University.query.order_by(University.name).all()
    return jsonify({'universities': [u.to_dict() for u in universities]})


@app.route('/api/categories')
def list_categories():
    categories = Category.query.order_by(Category.name).all()
    return jsonify({'categories': [{'id': c.id, 'name': c.name} for c in categories]})


@app.route('/api/university-requests', methods=['POST'])
def submit_university_request():
    """Anyone can ask for their school to be added."""
    data = get_json()
    name = (data.get('university_name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    domain = (data.get('domain') or '').strip().lower() or None

    if not name:
        return jsonify({'error': "University name is required."}), 400
    if not validate_email(email):
        return jsonify({'error': "Please provide a valid email address."}), 400

    req = UniversityRequest(university_name=name, domain=domain, requester_email=email)
    db.session.add(req)
    db.session.commit()
    logger.info(f"University request submitted: {name} by {email}")
    return jsonify({'request': req.to_dict()}), 201


# =========================================================
# SECTION 4: POSTS
# =========================================================

def _parse_pasabuy_items(raw_items):
    """Returns (True, [(name, price)]) or (False, error_message)."""
    if not isinstance(raw_items, list) or not raw_items:
        return False, "Add at least one item for PasaBuy."
    items = []
    for raw in raw_items:
        name = (raw.get('product_name') or '').strip() if isinstance(raw, dict) else ''
        if not name:
            return False, "Each PasaBuy item needs a product name."
        ok, price = validate_price(raw.get('price'), "Item price")
        if not ok:
            return False, price
        items.append((name, price))
    return True, items


def _apply_post_fields(post, data, creating):
    """Validate and copy editable fields onto a post. Returns an error message or None."""
    if creating or 'title' in data:
        title = (data.get('title') or '').strip()
        if not title:
            return "Title is required."
        if len(title) > MAX_TITLE_LENGTH:
            return f"Title is too long (max {MAX_TITLE_LENGTH} characters)."
        post.title = title

    if 'description' in data:
        description = (data.get('description') or '').strip()
        if len(description) > MAX_DESCRIPTION_LENGTH:
            return f"Description is too long (max {MAX_DESCRIPTION_LENGTH} characters)."
        post.description = description or None

    if 'condition' in data and data.get('condition'):
        if data['condition'] not in ITEM_CONDITIONS:
            return "Invalid item condition."
        post.condition = data['condition']

    if 'category_id' in data and data.get('category_id') is not None:
        category = db.session.get(Category, data['category_id'])
        if category is None:
            return "Invalid category."
        post.category_id = category.id

    needs_price = post.post_type in (POST_TYPE_SALE, POST_TYPE_RENT)
    if creating or 'price' in data:
        if data.get('price') not in (None, ''):
            ok, price = validate_price(data.get('price'))
            if not ok:
                return price
            post.price = price
        elif needs_price:
            return "Price is required."

    if post.post_type == POST_TYPE_PASABUY:
        if creating or 'service_fee' in data:
            ok, fee = validate_price(data.get('service_fee'), "Service fee")
            if not ok:
                return fee
            post.service_fee = fee
        if creating or 'items' in data:
            ok, items = _parse_pasabuy_items(data.get('items'))
            if not ok:
                return items
            post.pasabuy_items = [PasaBuyItem(product_name=n, price=p) for n, p in items]

    if 'image_urls' in data:
        urls = data.get('image_urls') or []
        if not isinstance(urls, list) or len(urls) > MAX_IMAGES_PER_POST:
            return f"You can attach up to {MAX_IMAGES_PER_POST} images."
        post.image_urls = urls

    if 'pickup_location' in data:
        post.pickup_location = (data.get('pickup_location') or '').strip() or None
    if data.get('pickup_lat') is not None and data.get('pickup_lng') is not None:
        ok, coords = validate_coordinates(data['pickup_lat'], data['pickup_lng'])
        if not ok:
            return "Valid pickup coordinates are required."
        post.pickup_lat, post.pickup_lng = coords
    return None


@app.route('/api/posts', methods=['POST'])
@login_required
def create_post():
    data = get_json()
    post_type = data.get('post_type')
    if post_type not in POST_TYPES:
        return jsonify({'error': "Invalid post type"}), 400

    post = Post(user_id=current_user.id, university_id=current_user.university_id,
                post_type=post_type, status=POST_STATUS_LISTED, image_urls=[])
    error = _apply_post_fields(post, data, creating=True)
    if error:
        return jsonify({'error': error}), 400

    db.session.add(post)
    db.session.commit()
    logger.info(f"Post {post.id} ({post_type}) created by user {current_user.id}")
    return jsonify({'post': post.to_dict()}), 201


@app.route('/api/posts')
def list_posts():
    query = Post.query.filter(Post.status == POST_STATUS_LISTED)

    if current_user.is_authenticated and current_user.university_id:
        query = query.filter(Post.university_id == current_user.university_id)
    elif request.args.get('university_id', type=int):
        query = query.filter(Post.university_id == request.args.get('university_id', type=int))

    post_type = request.args.get('post_type')
    if post_type:
        query = query.filter(Post.post_type == POST_TYPE_SLUGS.get(post_type, post_type))
    category_id = request.args.get('category', type=int)
    if category_id:
        query = query.filter(Post.category_id == category_id)
    search = (request.args.get('search') or '').strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Post.title.ilike(like), Post.description.ilike(like)))

    page = request.args.get('page', 1, type=int)
    pagination = query.order_by(Post.created_at.desc()).paginate(page=page, per_page=ITEMS_PER_PAGE, error_out=False)
    return jsonify({
        'posts': [p.to_dict() for p in pagination.items],
        'page': pagination.page,
        'pages': pagination.pages,
        'total': pagination.total,
    })


@app.route('/api/posts/<int:post_id>')
def get_post(post_id):
    post = db.get_or_404(Post, post_id)
    return jsonify({'post': post.to_dict()})


@app.route('/api/posts/<int:post_id>', methods=['PUT'])
@login_required
def edit_post(post_id):
    post = db.get_or_404(Post, post_id)
    if post.user_id != current_user.id:
        return jsonify({'error': "You can only edit your own listings."}), 403

    error = _apply_post_fields(post, get_json(), creating=False)
    if error:
        db.session.rollback()
        return jsonify({'error': error}), 400
    db.session.commit()
    return jsonify({'post': post.to_dict()})


@app.route('/api/posts/<int:post_id>/status', methods=['POST'])
@login_required
def update_post_status(post_id):
    post = db.get_or_404(Post, post_id)
    if post.user_id != current_user.id:
        return jsonify({'error': "You can only update your own listings."}), 403
    status = get_json().get('status')
    if status not in POST_STATUSES:
        return jsonify({'error': "Invalid status"}), 400
    post.status = status
    db.session.commit()
    logger.info(f"Post {post.id} set to {status}")
    return jsonify({'post': post.to_dict()})


@app.route('/api/upload', methods=['POST'])
@login_required
def upload_images():
    """Store listing photos or an ID image. Returns public URLs."""
    kind = request.form.get('kind', 'post')
    if kind not in IMAGE_FOLDERS:
        return jsonify({'error': "Invalid upload kind"}), 400

    files = request.files.getlist('files')
    if not files:
        return jsonify({'error': "No file provided"}), 400
    if len(files) > MAX_IMAGES_PER_POST:
        return jsonify({'error': f"You can upload up to {MAX_IMAGES_PER_POST} images at a time."}), 400

    for file in files:
        ok, error = validate_file_upload(file)
        if not ok:
            return jsonify({'error': error}), 400

    storage = get_storage_instance()
    urls = []
    for file in files:
        try:
            urls.append(storage.save_image(file, image_key(kind, current_user.id)))
        except Exception as e:
            logger.error(f"Image upload failed for user {current_user.id}: {e}", exc_info=True)
            return jsonify({'error': "Could not process image. Please try another file."}), 400

    if kind == 'id':
        current_user.id_image_url = urls[0]
        current_user.verification_status = 'Pending'
        db.session.commit()
    return jsonify({'urls': urls}), 201


@app.route('/api/delivery/quote', methods=['POST'])
@login_required
def delivery_quote():
    data = get_json()
    post = db.session.get(Post, data.get('postId') or 0)
    if post is None:
        return jsonify({'error': "Post not found"}), 404
    ok, coords = validate_coordinates(data.get('lat'), data.get('lng'))
    if not ok:
        return jsonify({'error': coords}), 400
    return jsonify(quote_delivery(post, *coords, token=app.config.get('MAPBOX_TOKEN')))


# =========================================================
# SECTION 5: CONVERSATIONS & MESSAGES
# =========================================================

def _transaction_payload(txn, user_id):
    """Transaction as seen by one party: row, role, label, control and total."""
    role = txn.role_of(user_id)
    payload = txn.to_dict()
    payload.update({
        'role': role,
        'label': resolve_action(txn.post_type, role, txn.status, txn.payment_method, txn.fulfillment_method),
        'control': describe_transaction_control(txn, role).to_dict(),
        'total': transaction_total(txn),
        'can_pay': role == ROLE_BUYER and is_payable(txn),
        'tab': STATUS_TABS.get(txn.status, 'active'),
    })
    return payload


def _message_payload(message, user_id):
    payload = {
        'id': message.id,
        'conversation_id': message.conversation_id,
        'sender_id': message.sender_id,
        'type': message.type,
        'body': message.body,
        'is_read': bool(message.is_read),
        'created_at': message.created_at.isoformat() if message.created_at else None,
        'transaction': None,
    }
    # System messages render the transaction's current state, not the state when sent
    if message.type == 'system' and message.transaction is not None:
        payload['transaction'] = _transaction_payload(message.transaction, user_id)
    return payload


def _get_conversation_for(conversation_id, user_id):
    conversation = db.session.get(Conversation, conversation_id)
    if conversation is None:
        return None, (jsonify({'error': "Conversation not found"}), 404)
    if not conversation.has_member(user_id):
        return None, (jsonify({'error': "You are not part of this conversation"}), 403)
    return conversation, None


@app.route('/api/conversations', methods=['POST'])
@login_required
def start_conversation():
    post = db.session.get(Post, get_json().get('postId') or 0)
    if post is None:
        return jsonify({'error': "Post not found"}), 404
    if post.user_id == current_user.id:
        return jsonify({'error': "You cannot message yourself about your own listing."}), 400

    conversation = Conversation.query.filter_by(post_id=post.id, buyer_id=current_user.id).first()
    created = conversation is None
    if created:
        conversation = Conversation(post_id=post.id, buyer_id=current_user.id, seller_id=post.user_id)
        db.session.add(conversation)
        db.session.commit()
    return jsonify({'conversation_id': conversation.id, 'created': created}), 201 if created else 200


@app.route('/api/conversations')
@login_required
def list_conversations():
    conversations = Conversation.query.filter(
        or_(Conversation.buyer_id == current_user.id, Conversation.seller_id == current_user.id)
    ).order_by(Conversation.created_at.desc()).all()

    results = []
    for c in conversations:
        other = c.seller if c.buyer_id == current_user.id else c.buyer
        last = c.messages[-1] if c.messages else None
        unread = sum(1 for m in c.messages if not m.is_read and m.sender_id != current_user.id)
        results.append({
            'id': c.id,
            'post_id': c.post_id,
            'post_title': c.post.title if c.post else None,
            'other_user': other.display_name if other else None,
            'last_message': last.body if last else None,
            'last_message_at': last.created_at.isoformat() if last else None,
            'unread': unread,
        })
    return jsonify({'conversations': results})


@app.route('/api/conversations/<int:conversation_id>/messages')
@login_required
def list_messages(conversation_id):
    conversation, error = _get_conversation_for(conversation_id, current_user.id)
    if error:
        return error
    return jsonify({'messages': [_message_payload(m, current_user.id) for m in conversation.messages]})


@app.route('/api/conversations/<int:conversation_id>/messages', methods=['POST'])
@login_required
def send_message(conversation_id):
    conversation, error = _get_conversation_for(conversation_id, current_user.id)
    if error:
        return error

    body = (get_json().get('body') or '').strip()
    if not body:
        return jsonify({'error': "Message cannot be empty."}), 400
    if len(body) > MAX_MESSAGE_LENGTH:
        return jsonify({'error': f"Message is too long (max {MAX_MESSAGE_LENGTH} characters)."}), 400

    message = Message(conversation_id=conversation.id, sender_id=current_user.id, type='text', body=body)
    db.session.add(message)
    db.session.commit()
    realtime.publish_message(message)
    return jsonify({'message': _message_payload(message, current_user.id)}), 201


@app.route('/api/conversations/<int:conversation_id>/read', methods=['POST'])
@login_required
def mark_conversation_read(conversation_id):
    conversation, error = _get_conversation_for(conversation_id, current_user.id)
    if error:
        return error
    updated = Message.query.filter(
        Message.conversation_id == conversation.id,
        Message.sender_id != current_user.id,
        Message.is_read.is_(False),
    ).update({'is_read': True}, synchronize_session=False)
    db.session.commit()
    return jsonify({'updated': updated})


@app.route('/api/messages/unread-count')
@login_required
def unread_message_count():
    count = Message.query.join(Conversation).filter(
        or_(Conversation.buyer_id == current_user.id, Conversation.seller_id == current_user.id),
        Message.sender_id != current_user.id,
        Message.is_read.is_(False),
    ).count()
    return jsonify({'count': count})


# =========================================================
# SECTION 6: TRANSACTIONS
# =========================================================

def _read_fulfillment(data, txn, post):
    """Fill meetup or delivery fields. Returns an error message or None."""
    fulfillment = data.get('fulfillment_method')
    if fulfillment not in FULFILLMENT_METHODS:
        return "Preferred method is required."
    txn.fulfillment_method = fulfillment

    if fulfillment == FULFILLMENT_MEETUP:
        txn.meetup_location = (data.get('meetup_location') or '').strip() or None
        txn.meetup_date = data.get('meetup_date') or None
        txn.meetup_time = data.get('meetup_time') or None
        return None

    address = (data.get('delivery_address') or '').strip()
    if not address:
        return "Delivery address is required."
    ok, coords = validate_coordinates(data.get('delivery_lat'), data.get('delivery_lng'))
    if not ok:
        return coords
    quote = quote_delivery(post, *coords, token=app.config.get('MAPBOX_TOKEN'))
    txn.delivery_address = address
    txn.delivery_lat, txn.delivery_lng = coords
    txn.delivery_distance_km = quote['distance_km']
    txn.delivery_fee = quote['delivery_fee']
    return None


def _read_payment(data, txn, required):
    method = data.get('payment_method')
    if not method:
        return "Payment method is required." if required else None
    if method not in PAYMENT_METHODS:
        return "Invalid payment method."
    txn.payment_method = method
    return None


def _fill_transaction_form(txn, post, data):
    """Type-specific form rules. Returns an error message or None."""
    post_type = post.post_type

    if post_type == POST_TYPE_SALE:
        txn.price = post.price
        return _read_payment(data, txn, required=True) or _read_fulfillment(data, txn, post)

    if post_type == POST_TYPE_RENT:
        start, end = parse_date(data.get('rent_start_date')), parse_date(data.get('rent_end_date'))
        if not start or not end:
            return "Rent start and end dates are required."
        if end < start:
            return "Rent end date must be after the start date."
        txn.rent_start_date, txn.rent_end_date = start, end
        txn.rent_days = max((end - start).days, 1)
        txn.price = post.price
        return _read_payment(data, txn, required=True) or _read_fulfillment(data, txn, post)

    if post_type == POST_TYPE_TRADE:
        offered = (data.get('offered_item') or '').strip()
        if not offered:
            return "Offered item is required."
        txn.offered_item = offered
        txn.price = post.price
        if data.get('cash_added') not in (None, '', 0, '0'):
            ok, cash = validate_price(data.get('cash_added'), "Added cash")
            if not ok:
                return cash
            txn.cash_added = cash
        if txn.cash_added:
            if not data.get('payment_method'):
                return "Payment method is required when trade includes additional cash."
            error = _read_payment(data, txn, required=True)
            if error:
                return error
        return _read_fulfillment(data, txn, post)

    if post_type == POST_TYPE_EMERGENCY:
        txn.rent_end_date = parse_date(data.get('return_date'))
        return _read_fulfillment(data, txn, post)

    if post_type == POST_TYPE_PASABUY:
        available = {item.id: item for item in post.pasabuy_items}
        selected = []
        for raw in data.get('items') or []:
            item = available.get(raw.get('id')) if isinstance(raw, dict) else None
            if item is None:
                return "Select items from this PasaBuy listing."
            try:
                quantity = int(raw.get('quantity', 1))
            except (ValueError, TypeError):
                return "Invalid item quantity."
            if quantity < 1:
                return "Invalid item quantity."
            selected.append({'id': item.id, 'product_name': item.product_name,
                             'price': item.price, 'quantity': quantity})
        if not selected:
            return "Select at least one item."
        txn.pasabuy_items = selected
        txn.items_total = round(sum(i['price'] * i['quantity'] for i in selected), 2)
        txn.service_fee = post.service_fee or 0
        return _read_payment(data, txn, required=True) or _read_fulfillment(data, txn, post)

    if post_type == POST_TYPE_GIVEAWAY:
        return _read_fulfillment(data, txn, post)

    return "Invalid post type"


@app.route('/api/transactions/<slug>', methods=['POST'])
@login_required
def create_transaction(slug):
    post_type = POST_TYPE_SLUGS.get(slug)
    if post_type is None:
        return jsonify({'error': "Invalid post type"}), 400

    data = get_json()
    conversation, error = _get_conversation_for(data.get('conversationId') or 0, current_user.id)
    if error:
        return error
    if conversation.buyer_id != current_user.id:
        return jsonify({'error': "Only the buyer can start a transaction."}), 403

    post = conversation.post
    if post is None or post.post_type != post_type:
        return jsonify({'error': "Invalid post type"}), 400
    if post.status != POST_STATUS_LISTED:
        return jsonify({'error': "This listing is no longer available."}), 400

    pending = Transaction.query.filter_by(conversation_id=conversation.id, status=STATUS_PENDING).first()
    if pending:
        return jsonify({'error': "You already have a pending transaction for this conversation. "
                                 "Please wait for the seller to confirm."}), 409

    txn = Transaction(
        reference_code=generate_reference_code(),
        post_id=post.id,
        conversation_id=conversation.id,
        buyer_id=current_user.id,
        seller_id=post.user_id,
        post_type=post_type,
        status=STATUS_PENDING,
    )
    error = _fill_transaction_form(txn, post, data)
    if error:
        return jsonify({'error': error}), 400

    db.session.add(txn)
    db.session.flush()
    message = add_system_message(txn, current_user.id, "Transaction Created")
    notify_user(post.user_id, f"New {post_type} request for {post.title}", related_id=txn.id)
    db.session.commit()
    logger.info(f"Transaction {txn.id} ({txn.reference_code}) created: {post_type} by user {current_user.id}")

    realtime.publish_transaction(txn, 'INSERT')
    realtime.publish_message(message)
    return jsonify({'transaction': _transaction_payload(txn, current_user.id)}), 201


@app.route('/api/transactions')
@login_required
def list_transactions():
    """Buyer and seller rows split into active/completed/cancelled tabs."""
    role = request.args.get('role')
    tab = request.args.get('tab')

    query = Transaction.query
    if role == ROLE_BUYER:
        query = query.filter(Transaction.buyer_id == current_user.id)
    elif role == ROLE_SELLER:
        query = query.filter(Transaction.seller_id == current_user.id)
    else:
        query = query.filter(or_(Transaction.buyer_id == current_user.id,
                                 Transaction.seller_id == current_user.id))

    rows = []
    for txn in query.order_by(Transaction.created_at.desc()).all():
        # Sellers don't keep cancelled requests in their list
        if txn.status == STATUS_CANCELLED and txn.seller_id == current_user.id:
            continue
        payload = _transaction_payload(txn, current_user.id)
        if tab and payload['tab'] != tab:
            continue
        rows.append(payload)
    return jsonify({'transactions': rows})


def _get_transaction_for(txn_id, user_id):
    txn = db.session.get(Transaction, txn_id)
    if txn is None:
        return None, (jsonify({'error': "Transaction not found"}), 404)
    if txn.role_of(user_id) is None:
        return None, (jsonify({'error': "You are not a party to this transaction"}), 403)
    return txn, None


@app.route('/api/transactions/<int:txn_id>')
@login_required
def get_transaction(txn_id):
    txn, error = _get_transaction_for(txn_id, current_user.id)
    if error:
        return error
    return jsonify({'transaction': _transaction_payload(txn, current_user.id)})


@app.route('/api/transactions/<int:txn_id>/state')
@login_required
def transaction_state(txn_id):
    """Authoritative row plus everything a client needs to re-render its action."""
    txn, error = _get_transaction_for(txn_id, current_user.id)
    if error:
        return error
    payload = _transaction_payload(txn, current_user.id)
    return jsonify({
        'transaction': txn.to_dict(),
        'role': payload['role'],
        'label': payload['label'],
        'control': payload['control'],
        'can_pay': payload['can_pay'],
        'total': payload['total'],
    })


def _after_transition(txn):
    realtime.publish_transaction(txn)
    email_status_change(txn)
    return jsonify({'success': True, 'status': txn.status,
                    'transaction': _transaction_payload(txn, current_user.id)})


@app.route('/api/transactions/<int:txn_id>/respond', methods=['POST'])
@login_required
def respond_transaction(txn_id):
    txn = respond_to_transaction(txn_id, current_user.id, get_json().get('decision'))
    db.session.commit()
    return _after_transition(txn)


@app.route('/api/status-update/<slug>', methods=['POST'])
@app.route('/api/status-update/<slug>/<step>', methods=['POST'])
@login_required
def status_update(slug, step=None):
    if slug not in POST_TYPE_SLUGS:
        return jsonify({'error': "Invalid post type"}), 404
    data = get_json()
    try:
        txn_id = int(data.get('transactionId'))
    except (ValueError, TypeError):
        return jsonify({'error': "transactionId is required"}), 400

    txn = apply_transition(txn_id, current_user.id, request.path, data.get('newStatus'))
    db.session.commit()
    return _after_transition(txn)


# =========================================================
# SECTION 7: PAYMENTS & WALLET
# =========================================================

def _load_payable(txn_id):
    txn = Transaction.query.with_for_update().filter_by(id=txn_id).first()
    if txn is None:
        raise PaymentError("Transaction not found", 404)
    if txn.buyer_id != current_user.id:
        raise PaymentError("Only the buyer can pay for this transaction", 403)
    return txn


def _parse_amount(value):
    try:
        amount = round(float(value), 2)
    except (ValueError, TypeError):
        raise PaymentError("Invalid amount")
    if amount <= 0:
        raise PaymentError("Amount must be greater than zero")
    return amount


@app.route('/api/wallet/pay', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_PAYMENT)
def wallet_pay():
    data = get_json()
    if not data.get('transactionId') or data.get('amount') is None:
        return jsonify({'error': "Missing transactionId or amount"}), 400

    txn = _load_payable(data.get('transactionId'))
    pay_with_wallet(txn, current_user.id, data.get('amount'))
    record_status_change(txn, current_user.id)
    db.session.commit()
    realtime.publish_transaction(txn)

    wallet = get_wallet(current_user.id)
    return jsonify({'success': True, 'status': txn.status, 'balance': wallet.current_balance})


@app.route('/api/payments/gcash', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_PAYMENT)
def gcash_checkout():
    data = get_json()
    txn = _load_payable(data.get('transactionId') or 0)
    if not is_payable(txn):
        raise PaymentError("This transaction is not awaiting payment", 409)

    total = transaction_total(txn)
    amount = _parse_amount(data.get('amount', total))
    if abs(amount - total) > 0.005:
        raise PaymentError(f"Amount must equal the transaction total of ₱{total:.2f}")

    base = public_base_url()
    session_id, checkout_url = create_gcash_checkout(
        txn, amount, app.config.get('PAYMONGO_SECRET_KEY'),
        success_url=f"{base}/transactions/{txn.id}?payment=success",
        cancel_url=f"{base}/transactions/{txn.id}?payment=cancelled",
    )
    txn.checkout_session_id = session_id
    db.session.commit()
    return jsonify({'checkout_url': checkout_url})


def _settle_gcash(txn, actor_id):
    """Mark a GCash-paid transaction Paid once. Returns False if already settled."""
    if not is_payable(txn):
        logger.warning(f"GCash payment for transaction {txn.id} not applied (status: {txn.status})")
        return False
    settle_payment(txn, transaction_total(txn), via='gcash')
    record_status_change(txn, actor_id)
    return True


@app.route('/api/payments/confirm', methods=['POST'])
@login_required
def confirm_gcash_payment():
    """Re-check a checkout session after the buyer returns from GCash."""
    txn = _load_payable(get_json().get('transactionId') or 0)
    if not txn.checkout_session_id:
        raise PaymentError("No GCash checkout for this transaction", 409)

    session_data = retrieve_checkout_session(txn.checkout_session_id, app.config.get('PAYMONGO_SECRET_KEY'))
    if not checkout_session_paid(session_data):
        db.session.rollback()
        return jsonify({'paid': False, 'status': txn.status})

    settled = _settle_gcash(txn, current_user.id)
    db.session.commit()
    if settled:
        realtime.publish_transaction(txn)
    return jsonify({'paid': True, 'status': txn.status})


@app.route('/api/paymongo/webhook', methods=['POST'])
@csrf.exempt  # PayMongo sends a signed raw POST with no CSRF token
def paymongo_webhook():
    secret = app.config.get('PAYMONGO_WEBHOOK_SECRET')
    if not secret:
        return jsonify({'error': 'PAYMONGO_WEBHOOK_SECRET not configured'}), 500

    payload = request.get_data(as_text=True)
    if not verify_webhook_signature(payload, request.headers.get('Paymongo-Signature'), secret):
        logger.warning("WEBHOOK: Invalid PayMongo signature")
        return jsonify({'error': 'Invalid signature'}), 400

    event = request.get_json(silent=True) or {}
    attributes = event.get('data', {}).get('attributes', {})
    event_type = attributes.get('type')

    if event_type == 'checkout_session.payment.paid':
        resource = attributes.get('data') or {}
        metadata = resource.get('attributes', {}).get('metadata') or {}
        txn_id = metadata.get('transaction_id')

        try:
            txn = Transaction.query.with_for_update().filter_by(id=int(txn_id)).first()
        except (ValueError, TypeError):
            txn = None
        if txn:
            if _settle_gcash(txn, txn.buyer_id):
                db.session.commit()
                logger.info(f"WEBHOOK: Transaction {txn.id} marked as paid")
                realtime.publish_transaction(txn)
            else:
                db.session.rollback()
        else:
            logger.error(f"WEBHOOK: Transaction {txn_id} not found in database")
    else:
        logger.info(f"WEBHOOK: Ignoring PayMongo event {event_type}")

    return jsonify({'received': True}), 200


@app.route('/api/wallet/balance')
@login_required
def wallet_balance():
    wallet = get_wallet(current_user.id)
    db.session.commit()
    return jsonify({'balance': wallet.current_balance, 'escrow': wallet.escrow_balance})


@app.route('/api/wallet/history')
@login_required
def wallet_history():
    rows = WalletTransaction.query.filter_by(user_id=current_user.id).order_by(
        WalletTransaction.created_at.desc(), WalletTransaction.id.desc()
    ).all()
    return jsonify({'transactions': [r.to_dict() for r in rows]})


@app.route('/api/wallet/cashin', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_PAYMENT)
def wallet_cashin():
    amount = _parse_amount(get_json().get('amount'))
    reference_code = f"CI-{int(time.time())}-{secrets.token_hex(3).upper()}"
    base = public_base_url()
    source_id, checkout_url = create_gcash_source(
        amount, app.config.get('PAYMONGO_SECRET_KEY'),
        success_url=f"{base}/wallet/cashin/success?ref={reference_code}",
        failed_url=f"{base}/wallet/cashin/failed",
        billing={'name': current_user.display_name, 'email': current_user.email},
    )
    start_cash_in(current_user.id, amount, reference_code, source_id)
    db.session.commit()
    return jsonify({'checkout_url': checkout_url, 'reference_code': reference_code})


@app.route('/api/wallet/confirm', methods=['POST'])
@login_required
def wallet_confirm():
    reference_code = (get_json().get('reference_code') or '').strip()
    if not reference_code:
        return jsonify({'error': "Missing data"}), 400
    row = complete_cash_in(current_user.id, reference_code, app.config.get('PAYMONGO_SECRET_KEY'))
    db.session.commit()
    wallet = get_wallet(current_user.id)
    return jsonify({'success': True, 'amount': row.amount, 'balance': wallet.current_balance})


@app.route('/api/wallet/cashout', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_PAYMENT)
def wallet_cashout():
    data = get_json()
    ok, number = validate_gcash_number(data.get('gcash_number'))
    if not ok:
        return jsonify({'error': number}), 400
    amount = _parse_amount(data.get('amount'))

    reference_code = f"CO-{int(time.time())}-{secrets.token_hex(3).upper()}"
    cash_out(current_user.id, amount, number, reference_code)
    db.session.commit()
    wallet = get_wallet(current_user.id)
    return jsonify({'success': True, 'reference_code': reference_code, 'balance': wallet.current_balance})


# =========================================================
# SECTION 8: REALTIME & NOTIFICATIONS
# =========================================================

@app.route('/api/realtime/<kind>/<int:object_id>')
@login_required
def realtime_stream(kind, object_id):
    if kind not in realtime.CHANNEL_KINDS:
        return jsonify({'error': "Unknown channel"}), 404

    if kind == 'transaction':
        _, error = _get_transaction_for(object_id, current_user.id)
        channel = realtime.transaction_channel(object_id)
    else:
        _, error = _get_conversation_for(object_id, current_user.id)
        channel = realtime.conversation_channel(object_id)
    if error:
        return error

    subscription = realtime.feed.subscribe(channel)
    return Response(
        realtime.stream(subscription),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'},
    )


@app.route('/api/notifications')
@login_required
def list_notifications():
    rows = Notification.query.filter_by(user_id=current_user.id).order_by(
        Notification.created_at.desc(), Notification.id.desc()
    ).limit(100).all()
    unread = Notification.query.filter_by(user_id=current_user.id, is_read=False).count()
    return jsonify({'notifications': [n.to_dict() for n in rows], 'unread': unread})


@app.route('/api/notifications/read', methods=['POST'])
@login_required
def mark_notifications_read():
    """Mark the given notification ids read, or all of them when none are given."""
    ids = get_json().get('ids')
    query = Notification.query.filter_by(user_id=current_user.id, is_read=False)
    if ids:
        query = query.filter(Notification.id.in_(ids))
    updated = query.update({'is_read': True}, synchronize_session=False)
    db.session.commit()
    return jsonify({'updated': updated})


# =========================================================
# SECTION 9: REVIEWS & REPORTS
# =========================================================

def _counterparty(txn, user_id):
    return txn.seller_id if user_id == txn.buyer_id else txn.buyer_id


@app.route('/api/transactions/<int:txn_id>/review', methods=['POST'])
@login_required
def review_transaction(txn_id):
    """Rate the other party. Once per party, and only after completion."""
    txn, error = _get_transaction_for(txn_id, current_user.id)
    if error:
        return error
    if txn.status != STATUS_COMPLETED:
        return jsonify({'error': "You can only review a completed transaction."}), 409

    data = get_json()
    try:
        rating = int(data.get('rating'))
    except (ValueError, TypeError):
        return jsonify({'error': "Please select a rating."}), 400
    if not MIN_RATING <= rating <= MAX_RATING:
        return jsonify({'error': f"Rating must be between {MIN_RATING} and {MAX_RATING}."}), 400
    comment = (data.get('comment') or '').strip() or None
    if comment and len(comment) > MAX_REVIEW_LENGTH:
        return jsonify({'error': f"Review must be {MAX_REVIEW_LENGTH} characters or less."}), 400

    if Review.query.filter_by(transaction_id=txn.id, reviewer_id=current_user.id).first():
        return jsonify({'error': "You have already reviewed this transaction."}), 409

    reviewee_id = _counterparty(txn, current_user.id)
    review = Review(transaction_id=txn.id, reviewer_id=current_user.id, reviewee_id=reviewee_id,
                    rating=rating, comment=comment)
    db.session.add(review)
    notify_user(reviewee_id, f"{current_user.display_name} left you a {rating}-star review",
                related_id=txn.id, type='review')
    db.session.commit()
    logger.info(f"REVIEW: User {current_user.id} rated user {reviewee_id} {rating} on transaction {txn.id}")
    return jsonify({'review': review.to_dict()}), 201


@app.route('/api/users/<int:user_id>/reviews')
@login_required
def user_reviews(user_id):
    user = db.get_or_404(User, user_id)
    reviews = Review.query.filter_by(reviewee_id=user.id).order_by(
        Review.created_at.desc(), Review.id.desc()
    ).all()
    average = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else None
    return jsonify({
        'reviews': [r.to_dict() for r in reviews],
        'count': len(reviews),
        'average_rating': average,
    })


@app.route('/api/transactions/<int:txn_id>/report', methods=['POST'])
@login_required
def report_transaction(txn_id):
    """Report the other party of a transaction for an admin to review."""
    txn, error = _get_transaction_for(txn_id, current_user.id)
    if error:
        return error

    data = get_json()
    report_type = (data.get('reportType') or '').strip()
    if report_type not in TRANSACTION_REPORT_TYPES:
        return jsonify({'error': "Please select a reason for the report."}), 400
    description = (data.get('description') or '').strip() or None
    if description and len(description) > MAX_REPORT_LENGTH:
        return jsonify({'error': f"Description must be {MAX_REPORT_LENGTH} characters or less."}), 400

    open_report = Report.query.filter_by(transaction_id=txn.id, reporter_id=current_user.id,
                                         status=REPORT_STATUS_PENDING).first()
    if open_report:
        return jsonify({'error': "You already have an open report for this transaction."}), 409

    report = Report(
        transaction_id=txn.id,
        reporter_id=current_user.id,
        reported_user_id=_counterparty(txn, current_user.id),
        report_type=report_type,
        description=description,
        status=REPORT_STATUS_PENDING,
    )
    db.session.add(report)
    db.session.commit()
    logger.info(f"REPORT: Transaction {txn.id} reported by user {current_user.id}: {report_type}")
    return jsonify({'report': report.to_dict()}), 201


# =========================================================
# SECTION 10: ADMIN ROUTES

# =========================================================

def _admin_denied():
    if not current_user.is_admin:
        return jsonify({'error': "Access denied."}), 403
    return None


@app.route('/api/admin/schools')
@login_required
def admin_list_schools():
    denied = _admin_denied()
    if denied:
        return denied
    rows = db.session.query(University, func.count(User.id)).outerjoin(
        User, User.university_id == University.id
    ).group_by(University.id).order_by(University.name).all()
    return jsonify({'schools': [dict(u.to_dict(), user_count=count) for u, count in rows]})


def _read_school(data):
    name = (data.get('name') or '').strip()
    abbreviation = (data.get('abbreviation') or '').strip()
    if not name:
        return None, "School name is required"
    if not abbreviation:
        return None, "Abbreviation is required"
    domain = (data.get('domain') or '').strip().lower() or None
    return (name, abbreviation, domain), None


@app.route('/api/admin/schools', methods=['POST'])
@login_required
def admin_add_school():
    denied = _admin_denied()
    if denied:
        return denied
    fields, error = _read_school(get_json())
    if error:
        return jsonify({'error': error}), 400
    name, abbreviation, domain = fields
    if University.query.filter_by(name=name).first():
        return jsonify({'error': f"School '{name}' already exists."}), 409

    school = University(name=name, abbreviation=abbreviation, domain=domain)
    db.session.add(school)
    db.session.commit()
    logger.info(f"ADMIN: School {name} added by {current_user.email}")
    return jsonify({'school': school.to_dict()}), 201


@app.route('/api/admin/schools/<int:school_id>', methods=['PUT'])
@login_required
def admin_edit_school(school_id):
    denied = _admin_denied()
    if denied:
        return denied
    school = db.get_or_404(University, school_id)
    fields, error = _read_school(get_json())
    if error:
        return jsonify({'error': error}), 400
    name, abbreviation, domain = fields
    if University.query.filter(University.name == name, University.id != school_id).first():
        return jsonify({'error': f"School '{name}' already exists."}), 409

    school.name, school.abbreviation, school.domain = name, abbreviation, domain
    db.session.commit()
    return jsonify({'school': school.to_dict()})


@app.route('/api/admin/schools/<int:school_id>', methods=['DELETE'])
@login_required
def admin_delete_school(school_id):
    denied = _admin_denied()
    if denied:
        return denied
    school = db.get_or_404(University, school_id)
    if User.query.filter_by(university_id=school.id).count():
        return jsonify({'error': "Cannot delete school with existing users"}), 400
    db.session.delete(school)
    db.session.commit()
    logger.info(f"ADMIN: School {school_id} deleted by {current_user.email}")
    return jsonify({'success': True})


@app.route('/api/admin/categories')
@login_required
def admin_list_categories():
    denied = _admin_denied()
    if denied:
        return denied
    rows = db.session.query(Category, func.count(Post.id)).outerjoin(
        Post, Post.category_id == Category.id
    ).group_by(Category.id).order_by(Category.name).all()
    return jsonify({'categories': [{'id': c.id, 'name': c.name, 'post_count': count} for c, count in rows]})


@app.route('/api/admin/categories', methods=['POST'])
@login_required
def admin_add_category():
    denied = _admin_denied()
    if denied:
        return denied
    name = (get_json().get('name') or '').strip()
    if not name:
        return jsonify({'error': "Category name is required."}), 400
    if Category.query.filter_by(name=name).first():
        return jsonify({'error': f"Category '{name}' already exists."}), 409

    category = Category(name=name)
    db.session.add(category)
    db.session.commit()
    return jsonify({'category': {'id': category.id, 'name': category.name}}), 201


@app.route('/api/admin/categories/<int:cat_id>', methods=['PUT'])
@login_required
def admin_edit_category(cat_id):
    denied = _admin_denied()
    if denied:
        return denied
    category = db.get_or_404(Category, cat_id)
    name = (get_json().get('name') or '').strip()
    if not name:
        return jsonify({'error': "Category name is required."}), 400
    if Category.query.filter(Category.name == name, Category.id != cat_id).first():
        return jsonify({'error': f"Category '{name}' already exists."}), 409
    category.name = name
    db.session.commit()
    return jsonify({'category': {'id': category.id, 'name': category.name}})


@app.route('/api/admin/categories/<int:cat_id>', methods=['DELETE'])
@login_required
def admin_delete_category(cat_id):
    denied = _admin_denied()
    if denied:
        return denied
    category = db.get_or_404(Category, cat_id)
    if Post.query.filter_by(category_id=category.id).count():
        return jsonify({'error': "Cannot delete category with existing posts"}), 400
    db.session.delete(category)
    db.session.commit()
    return jsonify({'success': True})


@app.route('/api/admin/university-requests')
@login_required
def admin_list_university_requests():
    denied = _admin_denied()
    if denied:
        return denied
    status = request.args.get('status')
    query = UniversityRequest.query
    if status:
        query = query.filter_by(status=status)
    rows = query.order_by(UniversityRequest.created_at.desc()).all()
    return jsonify({'requests': [r.to_dict() for r in rows]})


@app.route('/api/admin/university-requests/<int:request_id>', methods=['POST'])
@login_required
def admin_decide_university_request(request_id):
    denied = _admin_denied()
    if denied:
        return denied
    req = db.get_or_404(UniversityRequest, request_id)
    decision = get_json().get('decision')
    req.status = 'approved' if decision == 'approve' else 'rejected'
    db.session.commit()
    logger.info(f"ADMIN: University request {req.id} {req.status}")
    return jsonify({'request': req.to_dict()})


@app.route('/api/admin/reports')
@login_required
def admin_list_reports():
    denied = _admin_denied()
    if denied:
        return denied
    status = request.args.get('status')
    query = Report.query
    if status:
        query = query.filter_by(status=status)
    reports = query.order_by(Report.created_at.desc(), Report.id.desc()).all()
    return jsonify({'totalReports': len(reports), 'reports': [r.to_dict() for r in reports]})


def _resolve_report(report_id, action):
    """
    Close a pending report with a warning or a suspension of the reported user.

    Both actions notify the user; a suspension also emails them and ends
    their sessions (see load_user).
    """
    denied = _admin_denied()
    if denied:
        return denied
    report = db.get_or_404(Report, report_id)
    if report.status == REPORT_STATUS_RESOLVED:
        return jsonify({'error': "This report has already been resolved."}), 409

    reason = (get_json().get('reason') or '').strip()
    user = report.reported_user
    report.status = REPORT_STATUS_RESOLVED
    report.action_taken = action
    report.admin_notes = reason or None
    report.resolved_at = datetime.utcnow()

    if action == 'warned':
        user.warning_count = (user.warning_count or 0) + 1
        message = f"Warning issued regarding {report.report_type}. {reason}".strip()
        notify_user(user.id, message[:300], related_id=report.transaction_id, type='warning')
    else:
        user.is_suspended = True
        user.suspended_at = datetime.utcnow()
        message = f"Your account has been suspended due to {report.report_type}. " \
                  f"{reason or 'Please contact support for more information.'}"
        notify_user(user.id, message[:300], related_id=report.transaction_id, type='suspension')
    db.session.commit()

    logger.info(f"ADMIN: Report {report.id} resolved, user {user.id} {action} by {current_user.email}")
    if action == 'suspended':
        send_email(user.email, "Your EduCart account has been suspended",
                   f"<p>{html_module.escape(message)}</p>")
    return jsonify({'success': True, 'report': report.to_dict(), 'user': user.to_dict()})


@app.route('/api/admin/reports/<int:report_id>/warn', methods=['POST'])
@login_required
def admin_warn_user(report_id):
    return _resolve_report(report_id, 'warned')


@app.route('/api/admin/reports/<int:report_id>/suspend', methods=['POST'])
@login_required
def admin_suspend_user(report_id):
    return _resolve_report(report_id, 'suspended')


@app.route('/api/admin/dashboard')

@login_required
def admin_dashboard():
    denied = _admin_denied()
    if denied:
        return denied

    total_commissions = db.session.query(func.coalesce(func.sum(PlatformWalletTransaction.amount), 0)).scalar()

    # Commission per month of the current year
    year = date.today().year
    monthly = [0.0] * 12
    for amount, created_at in db.session.query(PlatformWalletTransaction.amount,
                                               PlatformWalletTransaction.created_at).all():
        if created_at and created_at.year == year:
            monthly[created_at.month - 1] = round(monthly[created_at.month - 1] + amount, 2)

    by_status = dict(db.session.query(Transaction.status, func.count(Transaction.id))
                     .group_by(Transaction.status).all())
    by_type = dict(db.session.query(Post.post_type, func.count(Post.id))
                   .group_by(Post.post_type).all())

    return jsonify({
        'totalUsers': User.query.count(),
        'pendingReports': Report.query.filter_by(status=REPORT_STATUS_PENDING).count(),
        'totalCommissions': round(float(total_commissions), 2),
        'commissionRate': get_commission_rate(),
        'monthlyRevenue': [{'month': i + 1, 'revenue': v} for i, v in enumerate(monthly)],
        'transactionsByStatus': by_status,
        'postsByType': by_type,
    })


@app.route('/api/admin/settings/commission', methods=['POST'])
@login_required
def admin_set_commission():
    denied = _admin_denied()
    if denied:
        return denied
    try:
        rate = float(get_json().get('rate'))
    except (ValueError, TypeError):
        return jsonify({'error': "Invalid commission rate"}), 400
    if not 0 <= rate < 1:
        return jsonify({'error': "Commission rate must be between 0 and 1"}), 400
    AppSetting.set('commission_rate', rate)
    logger.info(f"ADMIN: Commission rate set to {rate} (default {DEFAULT_COMMISSION_RATE})")
    return jsonify({'commissionRate': rate})


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=True, port=5000, threaded=True)
