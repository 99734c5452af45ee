"""
Authentication routes and utilities
"""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import IntegrityError

from portfolio import db, login_manager
from portfolio.models import USERNAME_RE, User

auth_bp = Blueprint('auth', __name__)


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID"""
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Authentication required'}), 401


def _payload():
    return request.get_json(silent=True) or request.form


@auth_bp.route('/register', methods=['POST'])
def register():
    """User registration"""
    data = _payload()
    username = (data.get('username') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    # Validation
    if not USERNAME_RE.match(username):
        return jsonify({'message': 'Username must be 3-30 letters, digits, "_" or "-"'}), 400
    if not email or len(password) < 6:
        return jsonify({'message': 'Email and a password of at least 6 characters are required'}), 400

    if User.query.filter((User.email == email) | (User.username == username)).first():
        return jsonify({'message': 'User already exists'}), 400

    user = User(
        username=username,
        email=email,
        first_name=(data.get('firstName') or '').strip() or None,
        last_name=(data.get('lastName') or '').strip() or None,
    )
    user.set_password(password)

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'message': 'User already exists'}), 400

    login_user(user)
    current_app.logger.info('User %s registered', username)
    return jsonify({'message': 'User registered successfully', 'user': user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """User login"""
    data = _payload()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    user = User.query.filter_by(email=email).first()
    if user is None or not user.check_password(password):
        return jsonify({'message': 'Invalid credentials'}), 400
    if not user.is_active:
        return jsonify({'message': 'Account is disabled'}), 403

    login_user(user, remember=bool(data.get('remember')))
    return jsonify({'message': 'Login successful', 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """User logout"""
    logout_user()
    return jsonify({'message': 'Logged out'})


@auth_bp.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})
