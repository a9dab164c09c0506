from enum import Enum


class _ValueEnum(str, Enum):
    """JSON 用字串值的 enum"""

    @classmethod
    def parse(cls, value):
        """
        把外部輸入轉成 enum,不在列舉內的值直接拒絕

        Raises:
            ValueError: 未知的值
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ', '.join(member.value for member in cls)
            raise ValueError(f"Invalid {cls.__name__} '{value}'. Allowed: {allowed}") from None

    @classmethod
    def values(cls):
        return [member.value for member in cls]

    def __str__(self):
        return self.value


class TaskStatus(_ValueEnum):
    """Kanban 欄位,定義順序就是看板的欄位順序"""
    TODO = 'to-do'
    IN_PROGRESS = 'in-progress'
    DONE = 'done'


class TaskPriority(_ValueEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'

    @property
    def weight(self):
        return PRIORITY_WEIGHT[self]


PRIORITY_WEIGHT = {
    TaskPriority.URGENT: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class ProjectStatus(_ValueEnum):
    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    COMPLETED = 'completed'


class ProjectPriority(_ValueEnum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class MemberRole(_ValueEnum):
    MEMBER = 'member'
    ADMIN = 'admin'
