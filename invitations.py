from flask import Blueprint, jsonify, current_app
from sqlalchemy.orm import joinedload
from marshmallow import Schema, fields
from models import db, Project, ProjectMember, ProjectInvitation, User
from enums import MemberRole
from auth import session_required, validate_request_data, get_json_body
from datetime import datetime, timedelta
import secrets
import logging

invitations_bp = Blueprint('invitations', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class SendInvitationSchema(Schema):
    """邀請驗證"""
    email = fields.Email(required=True, error_messages={
        'required': 'A valid email is required',
        'invalid': 'A valid email is required'
    })

# ============================================
# 輔助函數
# ============================================

def invitation_url(token):
    return f"{current_app.config['FRONTEND_URL'].rstrip('/')}/invite/{token}"


def get_owned_project(project_id, user_id):
    """邀請相關操作只有 owner 可以"""
    project = db.session.get(Project, project_id)
    if not project or project.owner_id != user_id:
        return None
    return project


def project_summary(project):
    return {
        'id': project.id,
        'title': project.title,
        'description': project.description
    }


def invitation_to_dict(invitation):
    return {
        'id': invitation.id,
        'email': invitation.email,
        'createdAt': invitation.created_at.isoformat(),
        'expiresAt': invitation.expires_at.isoformat(),
        'acceptedAt': invitation.accepted_at.isoformat() if invitation.accepted_at else None,
        'declinedAt': invitation.declined_at.isoformat() if invitation.declined_at else None,
        'invitedBy': invitation.invited_by.summary()
    }


def load_invitation_for_response(token):
    """
    依 token 取得邀請並檢查是否還能回覆

    Returns:
        tuple: (invitation, error_response)
    """
    invitation = ProjectInvitation.query.filter_by(token=token).options(
        joinedload(ProjectInvitation.project),
        joinedload(ProjectInvitation.invited_by)
    ).first()

    if not invitation:
        return None, (jsonify({'error': 'Invitation not found'}), 404)

    if invitation.accepted_at:
        return None, (jsonify({'error': 'This invitation has already been accepted'}), 400)

    if invitation.declined_at:
        return None, (jsonify({'error': 'This invitation has already been declined'}), 400)

    if invitation.is_expired:
        return None, (jsonify({'error': 'This invitation has expired'}), 400)

    return invitation, None

# ============================================
# 發送邀請
# ============================================

@invitations_bp.route('/projects/<int:project_id>/invite', methods=['POST'])
@session_required
def send_invitation(session, project_id):
    """
    建立專案邀請 (只有 owner)

    同一個 email 在同一專案只保留一筆邀請:
    已過期/已回覆的舊邀請會被取代,仍有效的邀請回傳 409
    """
    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(SendInvitationSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project = get_owned_project(project_id, session.user_id)
    if not project:
        return jsonify({'error': 'Project not found or access denied'}), 404

    email = result['email'].strip().lower()

    if email == project.owner.email.lower():
        return jsonify({'error': 'You cannot invite yourself to your own project'}), 400

    existing_user = User.query.filter_by(email=email).first()
    if existing_user and ProjectMember.query.filter_by(
            project_id=project_id, user_id=existing_user.id).first():
        return jsonify({'error': 'This person is already a member of the project'}), 409

    existing = ProjectInvitation.query.filter_by(email=email, project_id=project_id).first()
    if existing:
        if existing.is_open:
            return jsonify({
                'type': 'pending_invitation_exists',
                'error': 'An invitation is already pending for this email',
                'invitationUrl': invitation_url(existing.token)
            }), 409
        db.session.delete(existing)
        db.session.flush()

    invitation = ProjectInvitation(
        email=email,
        project_id=project_id,
        invited_by_id=session.user_id,
        token=secrets.token_hex(32),
        expires_at=datetime.utcnow() + timedelta(days=current_app.config['INVITATION_EXPIRES_DAYS'])
    )

    try:
        db.session.add(invitation)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Invitation creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Invitation creation failed due to server error'}), 500

    url = invitation_url(invitation.token)
    # 不寄信,連結記錄在 log
    logger.info(f"Invitation to project {project_id} created for {email}: {url}")

    return jsonify({
        'type': 'invitation_created',
        'message': 'Invitation created successfully',
        'invitationUrl': url
    }), 201

# ============================================
# 專案的邀請列表
# ============================================

@invitations_bp.route('/projects/<int:project_id>/invitations', methods=['GET'])
@session_required
def get_project_invitations(session, project_id):
    """仍在等待回覆的邀請"""
    if not get_owned_project(project_id, session.user_id):
        return jsonify({'error': 'Project not found or access denied'}), 404

    invitations = ProjectInvitation.query.filter(
        ProjectInvitation.project_id == project_id,
        ProjectInvitation.accepted_at.is_(None),
        ProjectInvitation.declined_at.is_(None),
        ProjectInvitation.expires_at > datetime.utcnow()
    ).options(
        joinedload(ProjectInvitation.invited_by)
    ).order_by(ProjectInvitation.created_at.desc()).all()

    return jsonify([invitation_to_dict(inv) for inv in invitations]), 200


@invitations_bp.route('/projects/<int:project_id>/invitations/history', methods=['GET'])
@session_required
def get_project_invitations_history(session, project_id):
    """所有邀請,依狀態分組"""
    if not get_owned_project(project_id, session.user_id):
        return jsonify({'error': 'Project not found or access denied'}), 404

    invitations = ProjectInvitation.query.filter_by(project_id=project_id).options(
        joinedload(ProjectInvitation.invited_by)
    ).order_by(ProjectInvitation.created_at.desc()).all()

    history = {'pending': [], 'accepted': [], 'declined': [], 'expired': []}
    for invitation in invitations:
        if invitation.accepted_at:
            group = 'accepted'
        elif invitation.declined_at:
            group = 'declined'
        elif invitation.is_expired:
            group = 'expired'
        else:
            group = 'pending'
        history[group].append(invitation_to_dict(invitation))

    history['total'] = len(invitations)
    return jsonify(history), 200


@invitations_bp.route('/projects/<int:project_id>/invitations/<int:invitation_id>', methods=['DELETE'])
@session_required
def delete_invitation(session, project_id, invitation_id):
    """撤回邀請"""
    if not get_owned_project(project_id, session.user_id):
        return jsonify({'error': 'Project not found or access denied'}), 404

    invitation = ProjectInvitation.query.filter_by(id=invitation_id, project_id=project_id).first()
    if not invitation:
        return jsonify({'error': 'Invitation not found'}), 404

    try:
        db.session.delete(invitation)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Invitation deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Invitation deletion failed due to server error'}), 500

    logger.info(f"Invitation {invitation_id} deleted from project {project_id}")

    return jsonify({'message': 'Invitation deleted successfully'}), 200

# ============================================
# 受邀者:查看 / 接受 / 拒絕
# ============================================

@invitations_bp.route('/invite/<token>', methods=['GET'])
def get_invitation(token):
    """公開的邀請資訊 (登入前也能看)"""
    invitation, error = load_invitation_for_response(token)
    if error:
        return error

    return jsonify({
        'email': invitation.email,
        'project': project_summary(invitation.project),
        'invitedBy': invitation.invited_by.summary(),
        'expiresAt': invitation.expires_at.isoformat()
    }), 200


@invitations_bp.route('/invite/<token>/accept', methods=['POST'])
@session_required
def accept_invitation(session, token):
    """接受邀請:建立成員資格並標記 accepted_at (同一個 transaction)"""
    invitation, error = load_invitation_for_response(token)
    if error:
        return error

    if invitation.email.lower() != session.user.email.lower():
        return jsonify({'error': 'This invitation is not for your account'}), 403

    now = datetime.utcnow()
    existing_member = ProjectMember.query.filter_by(
        project_id=invitation.project_id,
        user_id=session.user_id
    ).first()

    if existing_member:
        # 邀請還是標記為已接受,之後不能再用
        invitation.accepted_at = now
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Invitation close error for existing member: {str(e)}", exc_info=True)
            return jsonify({'error': 'Failed to accept invitation due to server error'}), 500
        return jsonify({'error': 'You are already a member of this project'}), 400

    try:
        db.session.add(ProjectMember(
            project_id=invitation.project_id,
            user_id=session.user_id,
            role=MemberRole.MEMBER
        ))
        invitation.accepted_at = now
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Invitation accept error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to accept invitation due to server error'}), 500

    logger.info(f"User {session.user.email} joined project {invitation.project_id} via invitation")

    return jsonify({
        'message': 'Invitation accepted successfully',
        'project': project_summary(invitation.project)
    }), 200


@invitations_bp.route('/invite/<token>/decline', methods=['POST'])
@session_required
def decline_invitation(session, token):
    invitation, error = load_invitation_for_response(token)
    if error:
        return error

    if invitation.email.lower() != session.user.email.lower():
        return jsonify({'error': 'This invitation is not for your account'}), 403

    invitation.declined_at = datetime.utcnow()

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Invitation decline error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to decline invitation due to server error'}), 500

    logger.info(f"User {session.user.email} declined invitation to project {invitation.project_id}")

    return jsonify({
        'message': 'Invitation declined successfully',
        'project': project_summary(invitation.project)
    }), 200


@invitations_bp.route('/user/invitations', methods=['GET'])
@session_required
def get_user_invitations(session):
    """寄給目前使用者、仍有效的邀請"""
    invitations = ProjectInvitation.query.filter(
        ProjectInvitation.email == session.user.email.lower(),
        ProjectInvitation.accepted_at.is_(None),
        ProjectInvitation.declined_at.is_(None),
        ProjectInvitation.expires_at > datetime.utcnow()
    ).options(
        joinedload(ProjectInvitation.project),
        joinedload(ProjectInvitation.invited_by)
    ).order_by(ProjectInvitation.created_at.desc()).all()

    return jsonify([{
        'token': inv.token,
        'email': inv.email,
        'project': project_summary(inv.project),
        'invitedBy': inv.invited_by.summary(),
        'expiresAt': inv.expires_at.isoformat()
    } for inv in invitations]), 200
