"""
Remote mutation client interface.

The batch engines only talk to the advertising platform through this
interface. Implementations raise ``RemoteError`` subclasses from
``adbatch.remote.errors``; ``RemoteTransientError`` marks causes the engines
may retry.
"""

from abc import ABC, abstractmethod

from adbatch.batches.models import AppliedChange, EntityRef, ProposedChange, StateSnapshot

class RemoteMutationClient(ABC):
    """Reads and mutates entity state on the remote advertising platform."""

    @abstractmethod
    async def read_current_state(self, entity: EntityRef, change: ProposedChange) -> StateSnapshot:
        """
        Capture the part of the entity's state that ``change`` would modify.

        Args:
            entity: Entity to read
            change: Change about to be applied, used to scope the snapshot

        Returns:
            StateSnapshot usable by ``apply_inverse``
        """

    @abstractmethod
    async def apply_change(self, entity: EntityRef, change: ProposedChange) -> AppliedChange:
        """
        Apply a proposed change to an entity.

        Returns:
            AppliedChange with the entity state after the change
        """

    @abstractmethod
    async def apply_inverse(self, entity: EntityRef, previous_state: StateSnapshot) -> AppliedChange:
        """
        Restore an entity to a previously captured state.

        Returns:
            AppliedChange with the entity state after the restore
        """

    async def close(self) -> None:
        """Release any resources held by the client."""
