import re

from flask import Blueprint, current_app, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from dashboard import get_context, get_user_store

auth_bp = Blueprint('auth', __name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MIN_PASSWORD_LENGTH = 6


def _result(success: bool, message: str, status: int = 200, **extra):
    return jsonify({'success': success, 'message': message, **extra}), status


def _credentials() -> tuple[str, str, dict]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = request.form.to_dict()
    email = str(payload.get('email') or '').strip()
    password = str(payload.get('password') or '')
    return email, password, payload


@auth_bp.route('/signup', methods=['POST'])
def signup():
    email, password, payload = _credentials()
    if not email or not password:
        return _result(False, 'All fields required', 400)
    if not EMAIL_PATTERN.match(email):
        return _result(False, 'Invalid email format', 400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return _result(False, 'Password must be at least 6 characters', 400)

    store = get_user_store()
    if store.fetch_user(email):
        return _result(False, 'Email already exists', 409)

    record, error = store.create_user(
        email,
        generate_password_hash(password),
        name=str(payload.get('name') or '').strip() or None,
    )
    if error == 'exists':
        return _result(False, 'Email already exists', 409)
    if error or record is None:
        current_app.logger.error("Insert error for %s: %s", email, error)
        return _result(False, 'Error creating account', 500)

    current_app.logger.info("User created: %s", record['email'])
    return _result(True, 'Account created successfully', 201)


@auth_bp.route('/login', methods=['POST'])
def login():
    email, password, _ = _credentials()
    if not email or not password:
        return _result(False, 'All fields required', 400)

    user = get_user_store().fetch_user(email)
    if not user or not check_password_hash(user['password_hash'], password):
        return _result(False, 'Invalid email or password', 401)

    session['user_id'] = user['id']
    session['email'] = user['email']
    session['role'] = (user.get('role') or 'USER').upper()
    session['name'] = user.get('name') or user['email']
    current_app.logger.info("Login successful: %s", user['email'])

    return _result(
        True,
        'Login successful',
        databaseConfigured=get_context().connection_config.is_configured,
    )


@auth_bp.route('/logout', methods=['GET', 'POST'])
def logout():
    current_app.logger.info("User logged out: %s", session.get('email'))
    for key in ('user_id', 'email', 'role', 'name'):
        session.pop(key, None)
    get_context().invalidate_schemas()
    return _result(True, 'Logged out')


@auth_bp.route('/api/session', methods=['GET'])
def current_session():
    if 'email' not in session:
        return jsonify({'user': None, 'databaseConfigured': False})
    return jsonify(
        {
            'user': {
                'id': session.get('user_id'),
                'email': session.get('email'),
                'role': session.get('role'),
                'name': session.get('name'),
            },
            'databaseConfigured': get_context().connection_config.is_configured,
        }
    )
