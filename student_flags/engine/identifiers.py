from __future__ import annotations

import logging

from student_flags.database.record_store import RecordKind, RecordSource, StudentId


def compound_fragment(student_id: StudentId) -> str:
    return f"_{student_id}_"


def resolve_student_id(store: RecordSource, student_id: StudentId, kind: RecordKind) -> StudentId:
    """Return the id that actually keys ``student_id``'s rows in one table.

    Tries an exact match first, then the first compound id embedding
    ``_<id>_``. A miss returns the id unchanged, which later reads as no data.
    """

    if store.find_records(kind, student_id):
        return student_id

    compound = store.find_compound_id(kind, compound_fragment(student_id))
    if compound is not None:
        logging.debug("Resolved student %s to compound id %s in %s", student_id, compound, kind.value)
        return compound

    return student_id


def resolve_all(store: RecordSource, student_id: StudentId) -> dict[RecordKind, StudentId]:
    # tables are keyed independently, so each one gets its own lookup
    return {kind: resolve_student_id(store, student_id, kind) for kind in RecordKind}
