from functools import wraps
from datetime import datetime
from flask import Blueprint, request, jsonify
from flask_jwt_extended import (
    create_access_token, create_refresh_token, jwt_required, get_jwt_identity,
    set_access_cookies, set_refresh_cookies, unset_jwt_cookies
)
from marshmallow import Schema, fields, validate, ValidationError
from extensions import bcrypt, limiter
from models import db, User
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, max=128, error='Password must be 8-128 characters'),
        error_messages={'required': 'Password is required'}
    )
    name = fields.Str(
        allow_none=True,
        validate=validate.Length(max=100, error='Name must be at most 100 characters')
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True)

# ============================================
# Session (明確傳入 handler,不用 global 查詢)
# ============================================

class Session:
    """
    已驗證的請求身分

    由 session_required 建立,作為第一個參數傳給 view
    """

    def __init__(self, user):
        self.user = user

    @property
    def user_id(self):
        return self.user.id

    def __repr__(self):
        return f'<Session user_id={self.user.id}>'


def load_session():
    """從 JWT identity 載入 Session,使用者不存在或被停用時回傳 None"""
    identity = get_jwt_identity()
    if not identity:
        return None

    try:
        user = db.session.get(User, int(identity))
    except (TypeError, ValueError):
        logger.warning(f"Malformed token identity: {identity!r}")
        return None

    if not user or not user.is_active:
        return None
    return Session(user)


def session_required(view):
    """
    需要登入的 endpoint

    用法:
        @tasks_bp.route('/<int:task_id>')
        @session_required
        def get_task(session, task_id): ...
    """
    @wraps(view)
    @jwt_required()
    def wrapper(*args, **kwargs):
        session = load_session()
        if session is None:
            return jsonify({'error': 'Authentication required'}), 401
        return view(session, *args, **kwargs)
    return wrapper

# ============================================
# Helper Functions
# ============================================

def validate_request_data(schema_class, data, partial=False):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data, partial=partial)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages


def get_json_body():
    """取得 JSON body,不是 JSON 時回傳 None"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data


def user_payload(user):
    return {
        'id': user.id,
        'email': user.email,
        'name': user.name
    }


def issue_session_cookies(response, user):
    """簽發 access / refresh token 並寫入 HttpOnly cookie"""
    set_access_cookies(response, create_access_token(identity=str(user.id)))
    set_refresh_cookies(response, create_refresh_token(identity=str(user.id)))
    return response

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per hour")
def register():
    """
    使用者註冊

    成功後直接登入 (寫入 session cookie)
    """
    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    email = result['email'].strip().lower()

    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already exists'}), 409

    hashed_password = bcrypt.generate_password_hash(result['password']).decode('utf-8')

    user = User(
        email=email,
        name=(result.get('name') or '').strip() or None,
        password_hash=hashed_password
    )

    try:
        db.session.add(user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Registration failed due to server error'}), 500

    logger.info(f"New user registered: {user.email}")

    response = jsonify({
        'message': 'User registered successfully',
        'user': user_payload(user)
    })
    issue_session_cookies(response, user)
    return response, 201

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """
    使用者登入

    不區分 email/password 錯誤,避免帳號枚舉攻擊
    """
    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    email = result['email'].strip().lower()
    user = User.query.filter_by(email=email).first()

    if not user or not bcrypt.check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {email}")
        return jsonify({'error': 'Invalid credentials'}), 401

    if not user.is_active:
        logger.warning(f"Inactive user login attempt: {user.email}")
        return jsonify({'error': 'Account is disabled'}), 403

    # 更新最後登入時間
    try:
        user.last_login = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        # 這個錯誤不影響登入,只記錄就好
        db.session.rollback()
        logger.error(f"Failed to update last_login for {user.email}: {str(e)}")

    logger.info(f"User logged in: {user.email}")

    response = jsonify({
        'message': 'Login successful',
        'user': user_payload(user)
    })
    issue_session_cookies(response, user)
    return response, 200

# ============================================
# Token 刷新 API
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """用 refresh cookie 換新的 access cookie"""
    session = load_session()
    if session is None:
        return jsonify({'error': 'Invalid or inactive user'}), 401

    response = jsonify({'message': 'Token refreshed'})
    set_access_cookies(response, create_access_token(identity=str(session.user_id)))
    return response, 200

# ============================================
# 登出 API
# ============================================

@auth_bp.route('/logout', methods=['POST'])
def logout():
    """清除 session cookie"""
    response = jsonify({'message': 'Logout successful'})
    unset_jwt_cookies(response)
    return response, 200

# ============================================
# 取得當前使用者資訊
# ============================================

@auth_bp.route('/me', methods=['GET'])
@session_required
def get_me(session):
    user = session.user
    return jsonify({
        'id': user.id,
        'email': user.email,
        'name': user.name,
        'isActive': user.is_active,
        'lastLogin': user.last_login.isoformat() if user.last_login else None,
        'createdAt': user.created_at.isoformat()
    }), 200
