from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from enums import TaskStatus, TaskPriority, ProjectStatus, ProjectPriority, MemberRole

db = SQLAlchemy()


def utc_isoformat(value):
    """資料庫存 naive UTC,輸出時補上 +00:00"""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def enum_column(enum_class, **kwargs):
    """
    以 enum 的 value 存入資料庫 (VARCHAR + CHECK)

    寫入列舉以外的值會直接失敗
    """
    return db.Column(
        db.Enum(
            enum_class,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            validate_strings=True,
            length=20,
        ),
        **kwargs
    )

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100))
    is_active = db.Column(db.Boolean, default=True)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯
    owned_projects = db.relationship('Project', backref='owner', lazy=True)
    tasks_assigned = db.relationship('Task', backref='assigned_to', lazy=True,
                                     foreign_keys='Task.assigned_to_id')

    def summary(self):
        """前端顯示用的精簡資訊"""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email
        }

# ============================================
# 2. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = enum_column(ProjectStatus, nullable=False, default=ProjectStatus.PENDING)
    priority = enum_column(ProjectPriority, nullable=False, default=ProjectPriority.LOW)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯
    tasks = db.relationship('Task', backref='project', lazy=True, cascade='all,delete-orphan')
    members = db.relationship('ProjectMember', backref='project', lazy=True, cascade='all,delete-orphan')
    invitations = db.relationship('ProjectInvitation', backref='project', lazy=True,
                                  cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_project_owner', 'owner_id'),
    )

# ============================================
# 3. ProjectMember 模型
# ============================================
class ProjectMember(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    role = enum_column(MemberRole, nullable=False, default=MemberRole.MEMBER)
    added_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref='project_memberships')

    # 唯一性約束
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_project_member'),
    )

# ============================================
# 4. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = enum_column(TaskStatus, nullable=False, default=TaskStatus.TODO)
    priority = enum_column(TaskPriority, nullable=False, default=TaskPriority.MEDIUM)
    due_date = db.Column(db.DateTime, nullable=True)

    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    assigned_to_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 索引
    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_assigned', 'assigned_to_id'),
    )

    def to_dict(self):
        """API 回傳格式 (camelCase,與前端一致)"""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'status': self.status.value,
            'priority': self.priority.value,
            'dueDate': utc_isoformat(self.due_date),
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
            'projectId': self.project_id,
            'assignedToId': self.assigned_to_id,
            'assignedTo': self.assigned_to.summary() if self.assigned_to else None
        }

# ============================================
# 5. ProjectInvitation 模型
# ============================================
class ProjectInvitation(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    invited_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    accepted_at = db.Column(db.DateTime)
    declined_at = db.Column(db.DateTime)

    invited_by = db.relationship('User')

    __table_args__ = (
        db.UniqueConstraint('email', 'project_id', name='unique_project_invitation'),
    )

    @property
    def is_expired(self):
        return self.expires_at <= datetime.utcnow()

    @property
    def is_open(self):
        """尚未接受、拒絕,也還沒過期"""
        return not self.accepted_at and not self.declined_at and not self.is_expired
