from virtualqueue.db.base_class import Base


# IMPORT ALL MODELS HERE (THIS REGISTERS THEM WITH Base.metadata)
from virtualqueue.models.user import User
from virtualqueue.models.session import UserSession
