from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity as handed over by the identity subsystem.

    ``is_elevated`` is the single capability bit the chat core understands:
    support agents and admins carry it, customers do not.
    """

    user_id: str
    is_elevated: bool = False
    display_name: str | None = None

    def can_access(self, customer_id: str) -> bool:
        return self.is_elevated or self.user_id == customer_id
