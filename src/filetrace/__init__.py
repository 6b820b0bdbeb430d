"""FileTrace: file sharing with expiring links and an audit trail."""

from .main import create_app
from .settings import FileTraceSettings

__all__ = ["create_app", "FileTraceSettings"]
