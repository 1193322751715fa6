"""Top-level application package for the email receipt intake API.

This package contains the FastAPI backend that turns forwarded receipt
emails into draft orders. It includes the database models, Pydantic
schemas, the pipeline services (admission guard, processing ledger,
ingestion queue, receipt extraction, product resolution and draft order
assembly) as well as the API routers.

To run the API locally you can execute:

```bash
uvicorn receipt_intake.api.main:app --reload
```

from the ``backend`` directory. Set ``DATABASE_URL`` (or
``DB_DEV_FALLBACK_SQLITE=true`` for a local ``receipt_intake.db``),
``EMAIL_ALLOWED_SENDERS`` and ``OPENAI_API_KEY`` via environment
variables or a ``.env`` file at the project root.
"""

__all__: list[str] = []
