"""Database repositories for audit rows.

Repositories write on the connection of the flush that triggered them, so
audit rows share the transaction of the mutation.
"""

from typing import Any

from sqlalchemy import Connection, insert

from papertrail.config import PaperTrailSettings
from papertrail.db.tables import RevisionTables, meta_data_attributes
from papertrail.models import Operation, Revision, RevisionChange
from papertrail.utils.time import utc_now


class RevisionRepository:
    """Repository for revision rows."""

    def __init__(self, connection: Connection, tables: RevisionTables, config: PaperTrailSettings):
        self.connection = connection
        self.tables = tables
        self.config = config

    def _values(
        self,
        model: str,
        document_id: Any,
        actor_id: Any,
        revision: int,
        operation: Operation,
        document: Any,
        meta_data: dict[str, Any],
    ) -> dict[str, Any]:
        values: dict[str, Any] = {}
        # Metadata first so the primary columns below always win
        for name in meta_data_attributes(self.config):
            values[name] = meta_data.get(name)
        values.update(
            {
                "model": model,
                "document": document,
                "operation": operation.value,
                "document_id": document_id,
                self.config.user_model_attribute: str(actor_id) if actor_id is not None else None,
                self.config.revision_attribute: revision,
                "created_at": utc_now(),
            }
        )
        return values

    def create(
        self,
        model: str,
        document_id: Any,
        actor_id: Any,
        revision: int,
        operation: Operation,
        document: Any,
        meta_data: dict[str, Any] | None = None,
    ) -> Revision:
        """Insert one revision row and return it with its generated id."""
        values = self._values(
            model, document_id, actor_id, revision, operation, document, meta_data or {}
        )
        result = self.connection.execute(insert(self.tables.revision_table).values(**values))
        values["id"] = result.inserted_primary_key[0]
        return self._row_to_model(values)

    def create_many(self, rows: list[dict[str, Any]]) -> int:
        """Insert several revision rows in one executemany."""
        if not rows:
            return 0
        params = [
            self._values(
                row["model"],
                row["document_id"],
                row.get("actor_id"),
                row["revision"],
                row["operation"],
                row["document"],
                row.get("meta_data") or {},
            )
            for row in rows
        ]
        self.connection.execute(insert(self.tables.revision_table), params)
        return len(params)

    def _row_to_model(self, values: dict[str, Any]) -> Revision:
        return Revision(
            id=values["id"],
            model=values["model"],
            document_id=values["document_id"],
            user_id=values[self.config.user_model_attribute],
            revision=values[self.config.revision_attribute],
            operation=Operation(values["operation"]),
            document=values["document"],
            meta_data={
                name: values[name]
                for name in meta_data_attributes(self.config)
                if values.get(name) is not None
            },
            created_at=values["created_at"],
        )


class RevisionChangeRepository:
    """Repository for per-field revision change rows."""

    def __init__(self, connection: Connection, tables: RevisionTables):
        self.connection = connection
        self.tables = tables

    def create(self, revision_id: Any, path: str, document: Any, diff: Any) -> RevisionChange:
        """Insert one change row referencing an existing revision."""
        values = {
            "revision_id": revision_id,
            "path": path,
            "document": document,
            "diff": diff,
            "created_at": utc_now(),
        }
        result = self.connection.execute(
            insert(self.tables.revision_change_table).values(**values)
        )
        return RevisionChange(
            id=result.inserted_primary_key[0],
            revision_id=revision_id,
            path=path,
            document=document,
            diff=diff,
        )
