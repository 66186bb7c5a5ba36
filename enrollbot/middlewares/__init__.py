from enrollbot.middlewares.db_middleware import DatabaseMiddleware
from enrollbot.middlewares.auth_middleware import AdminMiddleware, IsAdmin
from enrollbot.middlewares.flow_middleware import FlowMiddleware, FlowRegistry, participant_ref

__all__ = ["DatabaseMiddleware", "AdminMiddleware", "IsAdmin", "FlowMiddleware", "FlowRegistry", "participant_ref"]
