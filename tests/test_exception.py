import pytest
from psycopg import errors

from sequent.exception import (
    ArgumentError,
    ClosedError,
    ConfigurationError,
    DatabaseError,
    GroupClosedError,
    SequentError,
    SerializationFailure,
    UniqueViolation,
    UsageError,
    is_serialization_failure,
    is_unique_violation,
)


@pytest.mark.parametrize(
    "error,parents",
    (
        (ClosedError, (UsageError, SequentError)),
        (GroupClosedError, (ClosedError, UsageError)),
        (ArgumentError, (UsageError, ValueError)),
        (ConfigurationError, (ArgumentError, ValueError)),
        (UniqueViolation, (DatabaseError, SequentError)),
        (SerializationFailure, (DatabaseError, SequentError)),
    ),
)
def test_hierarchy(error, parents):
    for parent in parents:
        assert issubclass(error, parent)
    assert error.__doc__


def test_classifies_own_errors():
    assert is_unique_violation(UniqueViolation("dup"))
    assert is_serialization_failure(SerializationFailure("conflict"))
    assert is_unique_violation(DatabaseError("dup", sqlstate="23505"))
    assert not is_unique_violation(DatabaseError("other"))
    assert not is_serialization_failure(None)


def test_classifies_psycopg_errors():
    assert is_unique_violation(errors.UniqueViolation("dup"))
    assert is_serialization_failure(errors.SerializationFailure("conflict"))
    assert not is_unique_violation(errors.SerializationFailure("conflict"))
