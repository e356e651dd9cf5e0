import typing

GLOBAL_SUBJECT = 'global'

Subject = typing.Optional[str]


class Ledger:
    """
    Points keyed by subject. Points only ever increase: `add_points` is the sole
    mutation and it is atomic with respect to concurrent reads and additions to
    the same subject.

    Implementations must override `ensure_subject`, `get` and `add_points`.
    """

    ledger_type: str = None
    requires_subject = False

    async def open(self):
        pass

    async def close(self):
        pass

    async def ensure_subject(self, subject: Subject = None):
        """ Create the subject with zero points, does nothing if it already exists. """
        raise NotImplementedError()

    async def get(self, subject: Subject = None) -> int:
        """ Points of the subject, raises UnknownSubjectError if it was never created. """
        raise NotImplementedError()

    async def add_points(self, subject: Subject, points: int) -> int:
        """ Add points to the subject and return its new total. """
        raise NotImplementedError()

    @staticmethod
    def check_points(points: int):
        if not isinstance(points, int) or isinstance(points, bool):
            raise TypeError(f"points must be an integer, got {type(points).__name__}")
        if points < 0:
            raise ValueError(f"points can only be added, got {points}")
