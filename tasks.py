from flask import Blueprint, request, jsonify
from sqlalchemy.orm import joinedload
from sqlalchemy import case
from marshmallow import Schema, fields, validate, post_load
from models import db, Task
from enums import TaskStatus, TaskPriority
from auth import session_required, validate_request_data, get_json_body
from projects import check_project_access, is_project_participant
from datetime import timezone
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# 看板欄位順序 (to-do → in-progress → done)
STATUS_ORDER = case(
    {status.value: index for index, status in enumerate(TaskStatus)},
    value=Task.status
)

# ============================================
# Input Validation Schemas
# ============================================

class TaskFieldsSchema(Schema):
    """任務欄位 (JSON 使用 camelCase)"""
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    status = fields.Enum(TaskStatus, by_value=True)
    priority = fields.Enum(TaskPriority, by_value=True)
    due_date = fields.DateTime(allow_none=True, data_key='dueDate')
    assigned_to_id = fields.Int(allow_none=True, data_key='assignedToId')

    @post_load
    def normalize_due_date(self, data, **kwargs):
        # 存成 naive UTC: 有時區的先轉 UTC,沒有時區的視為 UTC
        due_date = data.get('due_date')
        if due_date is not None and due_date.tzinfo is not None:
            data['due_date'] = due_date.astimezone(timezone.utc).replace(tzinfo=None)
        return data

class CreateTaskSchema(TaskFieldsSchema):
    """建立任務驗證"""
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Task title is required'}
    )
    status = fields.Enum(TaskStatus, by_value=True, load_default=TaskStatus.TODO)
    priority = fields.Enum(TaskPriority, by_value=True, load_default=TaskPriority.MEDIUM)

class UpdateTaskSchema(TaskFieldsSchema):
    """更新任務驗證 (所有欄位都是選填)"""

class UpdateStatusSchema(Schema):
    """拖拉看板時只更新狀態"""
    status = fields.Enum(
        TaskStatus,
        by_value=True,
        required=True,
        error_messages={'required': 'Status is required'}
    )

# ============================================
# 輔助函數
# ============================================

def check_task_access(task_id, user_id):
    """
    檢查使用者是否有權限訪問任務 (透過所屬專案)

    Returns:
        tuple: (has_access, task, role)
    """
    task = db.session.get(Task, task_id, options=[joinedload(Task.project)])
    if not task:
        return False, None, None

    has_access, project, role = check_project_access(task.project_id, user_id)
    if not has_access:
        return False, None, None

    return True, task, role


def task_not_found():
    return jsonify({'error': 'Task not found or access denied'}), 404


def assignee_error(project, assigned_to_id):
    """被指派的人必須是 owner 或成員"""
    if assigned_to_id and not is_project_participant(project, assigned_to_id):
        return jsonify({'error': 'Assigned user must be a member of the project'}), 400
    return None

# ============================================
# 查詢專案的所有任務
# ============================================

@tasks_bp.route('/project/<int:project_id>', methods=['GET'])
@session_required
def get_project_tasks(session, project_id):
    """
    查詢專案的任務列表

    排序: 看板欄位順序,同欄位內新的在前
    """
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return jsonify({'error': 'Project not found or access denied'}), 404

    query = Task.query.filter_by(project_id=project_id).options(
        joinedload(Task.assigned_to)
    )

    # 篩選: 狀態 / 優先級 / 負責人
    status = request.args.get('status')
    if status:
        try:
            query = query.filter(Task.status == TaskStatus.parse(status))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    priority = request.args.get('priority')
    if priority:
        try:
            query = query.filter(Task.priority == TaskPriority.parse(priority))
        except ValueError as e:
            return jsonify({'error': str(e)}), 400

    assigned_to_id = request.args.get('assignedToId', type=int)
    if assigned_to_id:
        query = query.filter(Task.assigned_to_id == assigned_to_id)

    tasks = query.order_by(STATUS_ORDER, Task.created_at.desc(), Task.id.desc()).all()

    return jsonify([task.to_dict() for task in tasks]), 200

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('/project/<int:project_id>', methods=['POST'])
@session_required
def create_task(session, project_id):
    """在專案中建立任務,回傳完整的任務資料"""
    has_access, project, role = check_project_access(project_id, session.user_id)
    if not has_access:
        return jsonify({'error': 'Project not found or access denied'}), 404

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    error = assignee_error(project, result.get('assigned_to_id'))
    if error:
        return error

    task = Task(
        title=result['title'],
        description=result.get('description'),
        status=result['status'],
        priority=result['priority'],
        due_date=result.get('due_date'),
        project_id=project_id,
        assigned_to_id=result.get('assigned_to_id')
    )

    try:
        db.session.add(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task creation failed due to server error'}), 500

    logger.info(f"Task created: {task.title} in project {project_id} by user {session.user.email}")

    return jsonify(task.to_dict()), 201

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['PUT', 'PATCH'])
@session_required
def update_task(session, task_id):
    """更新任務欄位 (只更新有傳的欄位)"""
    has_access, task, role = check_task_access(task_id, session.user_id)
    if not has_access:
        return task_not_found()

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'assigned_to_id' in result:
        error = assignee_error(task.project, result['assigned_to_id'])
        if error:
            return error

    changes = {}
    for field in ['title', 'description', 'status', 'priority', 'due_date', 'assigned_to_id']:
        if field in result:
            old_value = getattr(task, field)
            new_value = result[field]
            if old_value != new_value:
                changes[field] = {'old': str(old_value), 'new': str(new_value)}
                setattr(task, field, new_value)

    if changes:
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Task update error: {str(e)}", exc_info=True)
            return jsonify({'error': 'Task update failed due to server error'}), 500

        logger.info(f"Task {task_id} updated by user {session.user.email}: {list(changes)}")

    return jsonify(task.to_dict()), 200

# ============================================
# 更新任務狀態 (看板拖拉)
# ============================================

@tasks_bp.route('/<int:task_id>/status', methods=['PATCH'])
@session_required
def update_task_status(session, task_id):
    """
    只更新狀態

    單筆 row update,不需要額外的 lock
    """
    has_access, task, role = check_task_access(task_id, session.user_id)
    if not has_access:
        return task_not_found()

    data = get_json_body()
    if data is None:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateStatusSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    old_status = task.status
    if old_status != result['status']:
        task.status = result['status']
        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Task status update error: {str(e)}", exc_info=True)
            return jsonify({'error': 'Status update failed due to server error'}), 500

        logger.info(f"Task {task_id} moved {old_status.value} -> {task.status.value} "
                    f"by user {session.user.email}")

    return jsonify(task.to_dict()), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['DELETE'])
@session_required
def delete_task(session, task_id):
    has_access, task, role = check_task_access(task_id, session.user_id)
    if not has_access:
        return task_not_found()

    try:
        task_title = task.title
        db.session.delete(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task deletion failed due to server error'}), 500

    logger.info(f"Task deleted: {task_title} by user {session.user.email}")

    return jsonify({'message': 'Task deleted successfully'}), 200
