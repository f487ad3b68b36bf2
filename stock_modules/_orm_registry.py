"""
Module ORM Registry (``stock_modules._orm_registry``).

Responsibility
--------------
Ensure all module-level SQLAlchemy ORM models are imported so that
``Base.metadata`` contains their table definitions before tables are
created.  ``stock_kernel.db.engine.create_tables()`` calls
``import_all_orm_models()`` lazily for this reason.

Architecture position
---------------------
**Modules layer** -- utility.  MUST NOT be imported at module level by
``stock_kernel``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``stock_modules.*.orm`` module.

    Kernel tables come first because module tables carry foreign keys to
    locations, items, suppliers and periods.  Idempotent.
    """
    import stock_kernel.models  # noqa: F401
    # fmt: off
    import stock_modules.procurement.orm  # noqa: F401
    import stock_modules.deliveries.orm  # noqa: F401
    import stock_modules.issues.orm  # noqa: F401
    import stock_modules.transfers.orm  # noqa: F401
    import stock_modules.ncr.orm  # noqa: F401
    import stock_modules.reconciliation.orm  # noqa: F401
    # fmt: on
