"""
Command Handler - Routes Redis commands to API methods.

Provides clean command routing with validation and error handling.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Awaitable, Optional

from claw_queue.loggers import logger


# Type alias for command handlers
CommandHandlerFunc = Callable[..., Awaitable[dict[str, Any]]]


@dataclass
class CommandResponse:
    """
    Standardized response for command execution.

    Attributes:
        command_id: The ID of the executed command.
        success: Whether the command succeeded.
        message: Human-readable message or rejection code.
        data: Optional response data.
    """

    command_id: Optional[Any] = None
    success: bool = False
    message: Optional[str] = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the response to a dictionary."""
        return {
            "command_id": self.command_id,
            "success": self.success,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class CommandDefinition:
    """
    Definition of a command.

    Attributes:
        name: Command name.
        handler: Handler function.
        required_args: Argument names that must be present and not null.
        optional_args: Argument names passed through only when present.
        description: Human-readable description.
    """

    name: str
    handler: CommandHandlerFunc
    required_args: list[str]
    optional_args: list[str] = field(default_factory=list)
    description: str = ""


class CommandHandler:
    """
    Routes commands to their appropriate handlers.

    Provides a clean way to register and dispatch commands
    to their handler methods on the API facade.
    """

    def __init__(self, api: Any) -> None:
        """
        Initialize the command handler.

        Args:
            api: The ClawQueueFacade instance.
        """
        self._api = api
        self._commands: dict[str, CommandDefinition] = {}
        self._register_default_commands()

    def _register_default_commands(self) -> None:
        """Register all default command handlers."""
        # Payment intake
        self.register(
            "create_intent",
            self._api.create_intent,
            ["name", "amount"],
            "Create a participant waiting for payment",
            optional_args=["email"],
        )
        self.register(
            "attach_payment",
            self._api.attach_payment,
            ["intent_id", "payment_id"],
            "Record the provider payment id for an intent",
        )
        self.register(
            "payment_confirmed",
            self._api.payment_confirmed,
            ["intent_id", "amount"],
            "Grant credits for a paid intent and queue the participant",
            optional_args=["payment_id"],
        )

        # Participant
        self.register(
            "control",
            self._api.control,
            ["session_token", "action"],
            "Move, release or grab as the active participant",
            optional_args=["direction"],
        )
        self.register(
            "participant_status",
            self._api.participant_status,
            ["session_token"],
            "Get own record and queue position",
        )
        self.register(
            "snapshot",
            self._api.snapshot,
            [],
            "Get the active session snapshot",
        )
        self.register(
            "queue",
            self._api.queue,
            [],
            "Get waiting and active participants in order",
        )

        # Admin: participants
        self.register(
            "admin_list_participants",
            self._api.admin_list_participants,
            [],
            "List every participant, newest first",
        )
        self.register(
            "admin_adjust_credits",
            self._api.admin_adjust_credits,
            ["participant_id", "delta"],
            "Add or subtract total credits",
        )
        self.register(
            "admin_set_credits_total",
            self._api.admin_set_credits_total,
            ["participant_id", "credits_total"],
            "Set total credits",
        )
        self.register(
            "admin_set_credits_used",
            self._api.admin_set_credits_used,
            ["participant_id", "credits_used"],
            "Set used credits",
        )
        self.register(
            "admin_requeue",
            self._api.admin_requeue,
            ["participant_id"],
            "Move a participant to the back of the line",
        )
        self.register(
            "admin_set_status",
            self._api.admin_set_status,
            ["participant_id", "status"],
            "Set participant status",
        )
        self.register(
            "admin_delete_participant",
            self._api.admin_delete_participant,
            ["participant_id"],
            "Delete a participant",
        )
        self.register(
            "admin_delete_all",
            self._api.admin_delete_all,
            [],
            "Delete every participant",
        )

        # Admin: session
        self.register(
            "admin_end_active",
            self._api.admin_end_active,
            [],
            "End the active session",
            optional_args=["status"],
        )
        self.register(
            "admin_start_next",
            self._api.admin_start_next,
            [],
            "Start the next eligible participant",
        )
        self.register(
            "admin_force_activate",
            self._api.admin_force_activate,
            ["participant_id"],
            "Activate a participant out of order",
        )
        self.register(
            "admin_release_all",
            self._api.admin_release_all,
            [],
            "Open every actuator channel",
        )

    def register(
        self,
        command_name: str,
        handler: CommandHandlerFunc,
        required_args: list[str],
        description: str = "",
        optional_args: Optional[list[str]] = None,
    ) -> None:
        """
        Register a command handler.

        Args:
            command_name: The name of the command.
            handler: The async handler function.
            required_args: List of required argument names.
            description: Human-readable description.
            optional_args: List of optional argument names.
        """
        self._commands[command_name] = CommandDefinition(
            name=command_name,
            handler=handler,
            required_args=required_args,
            optional_args=optional_args or [],
            description=description,
        )

    def get_available_commands(self) -> list[dict[str, Any]]:
        """Get list of available commands with their descriptions."""
        return [
            {
                "name": cmd.name,
                "required_args": cmd.required_args,
                "optional_args": cmd.optional_args,
                "description": cmd.description,
            }
            for cmd in self._commands.values()
        ]

    async def execute(self, command_data: dict[str, Any]) -> dict[str, Any]:
        """
        Execute a command based on command data.

        Args:
            command_data: Dictionary containing 'command', 'command_id', and 'data'.

        Returns:
            Response dictionary with execution result.
        """
        command = command_data.get("command")
        command_id = command_data.get("command_id")
        data = command_data.get("data", {}) or {}

        response = CommandResponse(command_id=command_id)

        # Validate command exists
        if command not in self._commands:
            logger.warning(f"Unknown command: {command}")
            response.message = f"Unknown command: {command}"
            return response.to_dict()

        definition = self._commands[command]

        try:
            # Extract required arguments from data
            kwargs = {arg: data.get(arg) for arg in definition.required_args}

            # Validate required arguments
            missing = [arg for arg in definition.required_args if kwargs.get(arg) is None]
            if missing:
                response.message = f"Missing required arguments: {missing}"
                return response.to_dict()

            for arg in definition.optional_args:
                if data.get(arg) is not None:
                    kwargs[arg] = data[arg]

            result = await definition.handler(**kwargs)

            # Update response with result
            if isinstance(result, dict):
                response.success = result.get("success", False)
                response.message = result.get("message")
                response.data = result.get("data")
            else:
                response.success = True
                response.data = result

        except Exception as e:
            logger.error(f"Error executing command '{command}': {e}")
            response.success = False
            response.message = f"Error: {e}"

        return response.to_dict()


async def claw_queue_commands(
    command_data: dict[str, Any],
    api: Any,
) -> dict[str, Any]:
    """
    Execute a command on the claw queue API.

    This is the main entry point for command execution from Redis pub/sub.

    Args:
        command_data: Dictionary containing command name, ID, and data.
        api: The ClawQueueFacade instance.

    Returns:
        Response dictionary with execution result.
    """
    handler = CommandHandler(api)
    return await handler.execute(command_data)
