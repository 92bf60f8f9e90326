"""Pydantic schemas for request/response validation."""

from .aggregate import *  # noqa: F403
from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .notification import *  # noqa: F403
from .resource import *  # noqa: F403
