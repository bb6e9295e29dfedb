# Package init for app.models
from .export import ExportConfig as ExportConfig
from .user import Base as Base  # explicit re-export
from .user import LinkedAccount as LinkedAccount
from .user import User as User
from .user import UserSession as UserSession
