"""
CRUD operations for database models.

Exports base CRUD class and model-specific CRUD implementations
with pre-instantiated singletons for direct use.

Usage:
    from testgen.boundary.db.CRUD import run_crud, run_log_crud

    run = await run_crud.get_by_id(db, run_id)
    await run_log_crud.append(db, run.id, "Fetching code")
"""

from testgen.boundary.db.CRUD.base_crud import BaseCRUD
from testgen.boundary.db.CRUD.run_crud import RunCRUD, run_crud
from testgen.boundary.db.CRUD.run_log_crud import RunLogCRUD, run_log_crud

__all__ = [
    "BaseCRUD",
    "RunCRUD",
    "run_crud",
    "RunLogCRUD",
    "run_log_crud",
]
