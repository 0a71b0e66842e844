from virtualqueue.models.user import User, UserRole
from virtualqueue.models.session import UserSession
