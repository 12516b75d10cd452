"""Error taxonomy shared by the schedule sync and reminder engine."""


class ScheduleSyncError(Exception):
    """Base class for engine errors."""


class PermissionDenied(ScheduleSyncError):
    """Notification permission was refused. Only the user can change this."""


class Unsupported(ScheduleSyncError):
    """The device has no push capability."""


class RemoteUnavailable(ScheduleSyncError):
    """The remote store could not be reached or rejected the request."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class SerializationFailure(ScheduleSyncError):
    """A local read or write failed; the caregiver's edit was not saved."""


class ConflictResolved:
    """Informational record: last-writer-wins overwrote one side of a date."""

    def __init__(self, day, winner, local_updated_at, remote_updated_at):
        self.day = day
        self.winner = winner
        self.local_updated_at = local_updated_at
        self.remote_updated_at = remote_updated_at

    def to_dict(self):
        return {
            'date': self.day.isoformat(),
            'winner': self.winner,
            'local_updated_at': self.local_updated_at.isoformat() if self.local_updated_at else None,
            'remote_updated_at': self.remote_updated_at.isoformat() if self.remote_updated_at else None,
        }

    def __str__(self):
        return (
            f"{self.day.isoformat()}: {self.winner} copy kept "
            f"(local={self.local_updated_at}, remote={self.remote_updated_at})"
        )
