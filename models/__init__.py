from .user import User  # noqa: F401
from .org import Org, OrgMembership  # noqa: F401
from .sso_config import SsoConfigRecord  # noqa: F401
