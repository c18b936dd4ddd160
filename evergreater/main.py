from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from evergreater import db
from evergreater.models import Account
from evergreater.services.realtime.binding import issue_binding_token

auth = Blueprint('auth', __name__)


def _credentials():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    if not email or not password:
        return None, None
    return email, password


def _session_payload(account):
    return {'user': account.to_dict(), 'wsToken': issue_binding_token(account.id)}


@auth.route('/register', methods=['POST'])
def register():
    email, password = _credentials()
    if not email:
        return jsonify({'error': 'Email and password are required'}), 400
    try:
        if Account.query.filter_by(email=email).first():
            return jsonify({'error': 'Email already in use'}), 409
        account = Account(email=email, supplies=current_app.config.get('STARTING_SUPPLIES', 100))
        account.set_password(password)
        db.session.add(account)
        db.session.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        db.session.rollback()
        return jsonify({'error': 'Email already in use'}), 409
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(f"[register] email={email} failed: {exc}")
        return jsonify({'error': 'Failed to register user'}), 500
    login_user(account, remember=True)
    current_app.logger.info(f"[register] account={account.id}")
    return jsonify(_session_payload(account)), 201


@auth.route('/login', methods=['POST'])
def login():
    email, password = _credentials()
    if not email:
        return jsonify({'error': 'Email and password are required'}), 400
    try:
        account = Account.query.filter_by(email=email).first()
    except SQLAlchemyError as exc:
        current_app.logger.error(f"[login] email={email} failed: {exc}")
        return jsonify({'error': 'Failed to login'}), 500
    if account and account.check_password(password):
        login_user(account, remember=True)
        return jsonify(_session_payload(account))
    return jsonify({'error': 'Invalid email or password'}), 401


@auth.route('/me', methods=['GET'])
@login_required
def me():
    return jsonify(_session_payload(current_user))


@auth.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully'})
