from flask import Blueprint, jsonify
from marshmallow import Schema, fields, validate, validates_schema, ValidationError
from extensions import bcrypt
from models import db, User
from auth import session_required, validate_request_data, get_json_body
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class UpdateProfileSchema(Schema):
    """個人資料更新驗證"""
    name = fields.Str(allow_none=True, validate=validate.Length(max=100))
    email = fields.Email(error_messages={'invalid': 'Invalid email format'})

    @validates_schema
    def require_one_field(self, data, **kwargs):
        if 'name' not in data and 'email' not in data:
            raise ValidationError('At least one field (name or email) must be provided')

class ChangePasswordSchema(Schema):
    """密碼修改驗證"""
    current_password = fields.Str(required=True, data_key='currentPassword')
    new_password = fields.Str(
        required=True,
        data_key='newPassword',
        validate=validate.Length(min=8, max=128, error='Password must be 8-128 characters')
    )


def profile_payload(user):
    return {
        'id': user.id,
        'email': user.email,
        'name': user.name,
        'createdAt': user.created_at.isoformat(),
        'updatedAt': user.updated_at.isoformat() if user.updated_at else None
    }

# ============================================
# 個人資料
# ============================================

@users_bp.route('/profile', methods=['GET'])
@session_required
def get_profile(session):
    return jsonify(profile_payload(session.user)), 200


@users_bp.route('/profile', methods=['PUT', 'PATCH'])
@session_required
def update_profile(session):
    """更新名稱或 email (email 不能和別人重複)"""
    user = session.user

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProfileSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'email' in result:
        email = result['email'].strip().lower()
        other = User.query.filter_by(email=email).first()
        if other and other.id != user.id:
            return jsonify({'error': 'This email is already used by another account'}), 409
        user.email = email

    if 'name' in result:
        user.name = (result['name'] or '').strip() or None

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Profile update error for user {user.id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Update failed due to server error'}), 500

    logger.info(f"User profile updated: {user.email}")

    return jsonify({
        'message': 'Profile updated successfully',
        'user': profile_payload(user)
    }), 200

# ============================================
# 修改密碼
# ============================================

@users_bp.route('/password', methods=['PUT'])
@session_required
def change_password(session):
    user = session.user

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(ChangePasswordSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not bcrypt.check_password_hash(user.password_hash, result['current_password']):
        return jsonify({'error': 'Current password is incorrect'}), 401

    user.password_hash = bcrypt.generate_password_hash(result['new_password']).decode('utf-8')

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Password change error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Password change failed due to server error'}), 500

    logger.info(f"Password changed for user: {user.email}")

    return jsonify({'message': 'Password changed successfully'}), 200

# ============================================
# 使用者目錄 (選擇成員用)
# ============================================

@users_bp.route('/all', methods=['GET'])
@session_required
def get_all_users(session):
    users = User.query.filter_by(is_active=True).order_by(User.name, User.email).all()
    return jsonify([user.summary() for user in users]), 200
