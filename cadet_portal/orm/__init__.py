from .base import Base

# Accounts and permissions
from .user import User, UserRole, AdminPermission, AdminRole, RolePermission, UserPermission, UserRoleAssignment

# Cadets and the score ledger
from .cadet import Cadet, Scores, ScoreHistory, ScoreCategory

# Task catalog and submissions
from .task import Task, TaskSubmission, TaskStatus, TaskDifficulty, SubmissionStatus
