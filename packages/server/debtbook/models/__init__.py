# SQLModel definitions: imported here to ensure metadata is populated.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .user_profile import UserProfile  # noqa: F401
from .join_request import JoinRequest  # noqa: F401
from .customer import Customer  # noqa: F401
from .transaction import LedgerTransaction  # noqa: F401
from .one_time_code import OneTimeCode  # noqa: F401
