from contextlib import contextmanager

from typeduel import db


@contextmanager
def atomic():
    """Run the block as one transaction: commit on success, roll back on error.

    Service operations that feed a decision from a read (is the room full,
    is everybody ready) do the read and the write inside the same block.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
