"""Top-level application package for the Ledgerly finance API.

Ledgerly ingests bank statements, categorises the resulting transactions
with a layered rules / embeddings / LLM pipeline that learns from user
corrections, matches vendor invoices against bank debits and runs small
user-defined workflows. The package contains database models, Pydantic
schemas, service layers and the FastAPI routers.

To run the API locally you can execute:

```bash
uvicorn ledgerly.api.main:app --reload
```

from the ``backend`` directory. The default configuration uses a local
SQLite database stored in ``ledgerly.db``. You can override
configuration values using environment variables or a ``.env`` file at
the project root.
"""

__all__: list[str] = []
