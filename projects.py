from flask import Blueprint, request, jsonify
from sqlalchemy.orm import joinedload
from sqlalchemy import func, case, and_, or_
from marshmallow import Schema, fields, validate
from models import db, Project, ProjectMember, User, Task
from enums import ProjectStatus, ProjectPriority, MemberRole, TaskStatus
from auth import session_required, validate_request_data, get_json_body
from datetime import datetime
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Project title is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    status = fields.Enum(ProjectStatus, by_value=True, load_default=ProjectStatus.PENDING)
    priority = fields.Enum(ProjectPriority, by_value=True, load_default=ProjectPriority.LOW)

class UpdateProjectSchema(Schema):
    """更新專案驗證"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    status = fields.Enum(ProjectStatus, by_value=True)
    priority = fields.Enum(ProjectPriority, by_value=True)

class AddMemberSchema(Schema):
    """新增成員驗證"""
    user_id = fields.Int(required=True, data_key='userId')
    role = fields.Enum(MemberRole, by_value=True, load_default=MemberRole.MEMBER)

class UpdateMemberSchema(Schema):
    role = fields.Enum(MemberRole, by_value=True, required=True)

# ============================================
# 權限檢查
# ============================================

def check_project_access(project_id, user_id):
    """
    檢查使用者是否有權限訪問專案

    Returns:
        tuple: (has_access: bool, project: Project|None, role: str|None)
        role 是 'owner' / 'admin' / 'member'
    """
    project = db.session.get(Project, project_id, options=[joinedload(Project.owner)])

    if not project:
        return False, None, None

    if project.owner_id == user_id:
        return True, project, 'owner'

    member = ProjectMember.query.filter_by(
        project_id=project_id,
        user_id=user_id
    ).first()

    if member:
        return True, project, member.role.value

    return False, None, None


def can_manage(role):
    """Owner 和 admin 可以管理專案與成員"""
    return role in ('owner', MemberRole.ADMIN.value)


def is_project_participant(project, user_id):
    """Owner 或成員 (指派任務時使用)"""
    if project.owner_id == user_id:
        return True
    return ProjectMember.query.filter_by(
        project_id=project.id,
        user_id=user_id
    ).first() is not None


def not_found_or_denied():
    # 不區分「不存在」和「沒權限」,避免洩漏專案是否存在
    return jsonify({'error': 'Project not found or access denied'}), 404


def project_to_dict(project, role=None, task_count=None, member_count=None):
    data = {
        'id': project.id,
        'title': project.title,
        'description': project.description,
        'status': project.status.value,
        'priority': project.priority.value,
        'ownerId': project.owner_id,
        'owner': project.owner.summary(),
        'createdAt': project.created_at.isoformat(),
        'updatedAt': project.updated_at.isoformat() if project.updated_at else None
    }
    if role is not None:
        data['myRole'] = role
    if task_count is not None:
        data['taskCount'] = task_count
    if member_count is not None:
        data['memberCount'] = member_count
    return data


def member_to_dict(membership):
    return {
        'userId': membership.user_id,
        'projectId': membership.project_id,
        'role': membership.role.value,
        'addedAt': membership.added_at.isoformat(),
        'user': membership.user.summary()
    }

# ============================================
# 建立專案
# ============================================

@projects_bp.route('', methods=['POST'])
@session_required
def create_project(session):
    """建立新專案,建立者就是 owner"""
    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project = Project(
        title=result['title'],
        description=result.get('description'),
        status=result['status'],
        priority=result['priority'],
        owner_id=session.user_id
    )

    try:
        db.session.add(project)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project creation failed due to server error'}), 500

    logger.info(f"Project created: {project.title} by user {session.user.email}")

    return jsonify(project_to_dict(project, role='owner', task_count=0, member_count=0)), 201

# ============================================
# 查詢我的所有專案
# ============================================

@projects_bp.route('', methods=['GET'])
@session_required
def get_my_projects(session):
    """
    查詢我擁有或參與的所有專案

    用 subquery 統計任務與成員數,避免 N+1
    """
    page = request.args.get('page', 1, type=int)
    per_page = min(request.args.get('per_page', 50, type=int), 100)

    try:
        task_stats = db.session.query(
            Task.project_id,
            func.count(Task.id).label('task_count')
        ).group_by(Task.project_id).subquery()

        member_stats = db.session.query(
            ProjectMember.project_id,
            func.count(ProjectMember.id).label('member_count')
        ).group_by(ProjectMember.project_id).subquery()

        member_project_ids = db.select(ProjectMember.project_id).where(
            ProjectMember.user_id == session.user_id
        )

        query = db.session.query(
            Project,
            task_stats.c.task_count,
            member_stats.c.member_count
        ).outerjoin(
            task_stats, Project.id == task_stats.c.project_id
        ).outerjoin(
            member_stats, Project.id == member_stats.c.project_id
        ).filter(
            or_(
                Project.owner_id == session.user_id,
                Project.id.in_(member_project_ids)
            )
        ).options(
            joinedload(Project.owner)
        ).order_by(Project.created_at.desc(), Project.id.desc())

        total = query.count()
        rows = query.offset((page - 1) * per_page).limit(per_page).all()

        # 一次查出我在這些專案的角色
        project_ids = [project.id for project, _, _ in rows]
        roles = dict(
            db.session.query(ProjectMember.project_id, ProjectMember.role).filter(
                ProjectMember.user_id == session.user_id,
                ProjectMember.project_id.in_(project_ids)
            ).all()
        ) if project_ids else {}

        projects_list = []
        for project, task_count, member_count in rows:
            if project.owner_id == session.user_id:
                my_role = 'owner'
            else:
                my_role = roles[project.id].value if project.id in roles else None

            projects_list.append(project_to_dict(
                project,
                role=my_role,
                task_count=task_count or 0,
                member_count=member_count or 0
            ))

        return jsonify({
            'projects': projects_list,
            'total': total,
            'page': page,
            'per_page': per_page
        }), 200

    except Exception as e:
        logger.error(f"Error fetching projects: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to fetch projects'}), 500

# ============================================
# 查詢單一專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['GET'])
@session_required
def get_project(session, project_id):
    """查詢專案詳細資訊 (含成員)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    members = ProjectMember.query.filter_by(project_id=project_id).options(
        joinedload(ProjectMember.user)
    ).order_by(ProjectMember.added_at.desc()).all()

    data = project_to_dict(project, role=role, member_count=len(members))
    data['members'] = [member_to_dict(m) for m in members]
    return jsonify(data), 200

# ============================================
# 更新專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['PUT', 'PATCH'])
@session_required
def update_project(session, project_id):
    """更新專案資訊 (owner 或 admin)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    if not can_manage(role):
        return jsonify({'error': 'Only the owner or an admin can update the project'}), 403

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    changes = {}
    for field in ['title', 'description', 'status', 'priority']:
        if field in result:
            old_value = getattr(project, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {'old': str(old_value), 'new': str(new_value)}
                setattr(project, field, new_value)

    if changes:
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Project update error: {str(e)}", exc_info=True)
            return jsonify({'error': 'Project update failed due to server error'}), 500

        logger.info(f"Project {project_id} updated by user {session.user.email}: {list(changes)}")

    return jsonify(project_to_dict(project, role=role)), 200

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@session_required
def delete_project(session, project_id):
    """刪除專案 (只有 owner 可以,cascade 刪除任務/成員/邀請)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    if role != 'owner':
        return jsonify({'error': 'Only the project owner can delete the project'}), 403

    try:
        project_title = project.title
        db.session.delete(project)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project deletion failed due to server error'}), 500

    logger.info(f"Project deleted: {project_title} by user {session.user.email}")

    return jsonify({'message': 'Project deleted successfully'}), 200

# ============================================
# 專案成員管理
# ============================================

@projects_bp.route('/<int:project_id>/members', methods=['GET'])
@session_required
def get_project_members(session, project_id):
    """取得專案成員列表"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    members = ProjectMember.query.filter_by(project_id=project_id).options(
        joinedload(ProjectMember.user)
    ).order_by(ProjectMember.added_at.desc()).all()

    return jsonify({
        'owner': project.owner.summary(),
        'members': [member_to_dict(m) for m in members],
        'total': len(members)
    }), 200


@projects_bp.route('/<int:project_id>/members', methods=['POST'])
@session_required
def add_project_member(session, project_id):
    """新增專案成員 (owner 或 admin)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    if not can_manage(role):
        return jsonify({'error': 'Only the owner or an admin can add members'}), 403

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(AddMemberSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    user = db.session.get(User, result['user_id'])
    if not user:
        return jsonify({'error': 'User not found'}), 404

    if user.id == project.owner_id:
        return jsonify({'error': 'The owner is already part of the project'}), 400

    existing = ProjectMember.query.filter_by(
        project_id=project_id,
        user_id=user.id
    ).first()

    if existing:
        return jsonify({'error': 'User is already a member'}), 409

    member = ProjectMember(
        project_id=project_id,
        user_id=user.id,
        role=result['role']
    )

    try:
        db.session.add(member)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to add member due to server error'}), 500

    logger.info(f"Member added to project {project_id}: user {user.email}")

    return jsonify(member_to_dict(member)), 201


@projects_bp.route('/<int:project_id>/members/<int:user_id>', methods=['PATCH'])
@session_required
def update_project_member(session, project_id, user_id):
    """修改成員角色 (只有 owner)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    if role != 'owner':
        return jsonify({'error': 'Only the project owner can change member roles'}), 403

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateMemberSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if not member:
        return jsonify({'error': 'Member not found in this project'}), 404

    member.role = result['role']

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error updating member role: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to update member due to server error'}), 500

    logger.info(f"Member {user_id} of project {project_id} is now {member.role.value}")

    return jsonify(member_to_dict(member)), 200


@projects_bp.route('/<int:project_id>/members/<int:user_id>', methods=['DELETE'])
@session_required
def remove_project_member(session, project_id, user_id):
    """移除成員 (owner 或 admin,成員也可以自己退出)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    if not can_manage(role) and user_id != session.user_id:
        return jsonify({'error': 'Only the owner or an admin can remove members'}), 403

    member = ProjectMember.query.filter_by(project_id=project_id, user_id=user_id).first()
    if not member:
        return jsonify({'error': 'Member not found in this project'}), 404

    try:
        db.session.delete(member)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing member: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to remove member due to server error'}), 500

    logger.info(f"Member {user_id} removed from project {project_id} by user {session.user.email}")

    return '', 204

# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<int:project_id>/stats', methods=['GET'])
@session_required
def get_project_stats(session, project_id):
    """取得專案統計資訊 (單一聚合查詢)"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return not_found_or_denied()

    task_stats = db.session.query(
        func.count(Task.id).label('total'),
        func.sum(case((Task.status == TaskStatus.TODO, 1), else_=0)).label('todo'),
        func.sum(case((Task.status == TaskStatus.IN_PROGRESS, 1), else_=0)).label('in_progress'),
        func.sum(case((Task.status == TaskStatus.DONE, 1), else_=0)).label('done'),
        func.sum(case((and_(Task.due_date < datetime.utcnow(), Task.status != TaskStatus.DONE), 1),
                      else_=0)).label('overdue')
    ).filter(Task.project_id == project_id).first()

    member_count = ProjectMember.query.filter_by(project_id=project_id).count()

    total = task_stats.total or 0
    done = task_stats.done or 0

    return jsonify({
        'tasks': {
            'total': total,
            TaskStatus.TODO.value: task_stats.todo or 0,
            TaskStatus.IN_PROGRESS.value: task_stats.in_progress or 0,
            TaskStatus.DONE.value: done,
            'overdue': task_stats.overdue or 0
        },
        'members': member_count,
        'completionRate': round(done / (total or 1) * 100, 2)
    }), 200
