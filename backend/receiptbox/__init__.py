"""Top-level application package for the receipt bulk-operations API.

This package contains the modules required to run the FastAPI backend
that filters, bulk-edits, bulk-deletes and exports a user's receipts:
database models, Pydantic request/response schemas, the filter
compiler, query / mutation / export services and the API router.

To run the API locally you can execute:

```bash
uvicorn receiptbox.api.main:app --reload
```

This will serve the FastAPI application on http://localhost:8000 and
automatically reload on code changes. The default configuration uses
a local SQLite database stored in ``receiptbox.db``. You can override
configuration values using environment variables or a ``.env`` file at
the project root.
"""

__all__: list[str] = []
