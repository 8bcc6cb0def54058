"""DOI registration state machine."""

from shared.schemas.content import RegistrationState


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        current_state: RegistrationState,
        target_state: RegistrationState,
        message: str | None = None,
    ):
        self.current_state = current_state
        self.target_state = target_state
        self.message = message or (
            f"Invalid registration transition from {current_state.value} to {target_state.value}"
        )
        super().__init__(self.message)


class RegistrationStateMachine:
    """Registration lifecycle state machine.

    Valid transitions:
    - unset -> pending (submission started)
    - pending -> registered (authority accepted the deposit)
    - pending -> failed (retries exhausted or terminal error)
    - unset -> failed (fatal before submission, e.g. identifier collisions)
    - failed -> pending (retry)
    - failed -> unset, registered -> unset (explicit retry reset)
    """

    VALID_TRANSITIONS: set[tuple[RegistrationState, RegistrationState]] = {
        (RegistrationState.UNSET, RegistrationState.PENDING),
        (RegistrationState.PENDING, RegistrationState.REGISTERED),
        (RegistrationState.PENDING, RegistrationState.FAILED),
        (RegistrationState.UNSET, RegistrationState.FAILED),
        (RegistrationState.FAILED, RegistrationState.PENDING),
        (RegistrationState.FAILED, RegistrationState.UNSET),
        (RegistrationState.REGISTERED, RegistrationState.UNSET),
    }

    @classmethod
    def is_valid_transition(
        cls,
        current_state: RegistrationState,
        target_state: RegistrationState,
    ) -> bool:
        """Check if a state transition is valid.

        Args:
            current_state: Current registration state
            target_state: Desired new state

        Returns:
            True if transition is valid, False otherwise
        """
        return (current_state, target_state) in cls.VALID_TRANSITIONS

    @classmethod
    def validate_transition(
        cls,
        current_state: RegistrationState,
        target_state: RegistrationState,
    ) -> None:
        """Validate a state transition, raising an error if invalid.

        Raises:
            InvalidTransitionError: If transition is not valid
        """
        if not cls.is_valid_transition(current_state, target_state):
            raise InvalidTransitionError(current_state, target_state)

    @classmethod
    def can_start(cls, state: RegistrationState) -> bool:
        """Check if a submission may be started from this state."""
        return cls.is_valid_transition(state, RegistrationState.PENDING)
