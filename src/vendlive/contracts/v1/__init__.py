from .machines import *  # noqa: F401,F403
from .machines import __all__ as _machines_all

__all__ = list(_machines_all)
