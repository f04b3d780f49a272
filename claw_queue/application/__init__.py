"""
Application layer - Application services and use cases.

Contains:
- Payment service
- Admin service
- API facade
- Command handlers
"""

from .payment_service import PaymentService
from .admin_service import AdminService
from .api_facade import ClawQueueFacade
from .command_handler import CommandHandler, CommandResponse, claw_queue_commands


__all__ = [
    "PaymentService",
    "AdminService",
    "ClawQueueFacade",
    "CommandHandler",
    "CommandResponse",
    "claw_queue_commands",
]
