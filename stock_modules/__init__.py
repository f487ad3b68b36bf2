"""
Stock document modules (``stock_modules``).

One package per document type, each laid out the same way:

    models.py   frozen DTOs and request dataclasses (shape validation)
    orm.py      SQLAlchemy tables with ``to_dto()``
    service.py  the orchestration service that owns the transaction

Packages
--------
* ``procurement``     purchase requisitions and purchase orders
* ``deliveries``      supplier receipts, over-delivery approval, PO auto-close
* ``issues``          consumption postings
* ``transfers``       inter-location transfers under approval
* ``ncr``             non-conformance reports (automatic and manual)
* ``reconciliation``  period reconciliation and period close orchestration

Architecture position
---------------------
**Modules layer** -- imports from ``stock_kernel``, ``stock_engines`` and
``stock_config``.  The kernel never imports from here, except the lazy
imports in ``create_tables`` and the immutability listener registration.
"""
