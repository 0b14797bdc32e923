"""SQLAlchemy-backed document store.

Stores each document as one row of JSON with its version. Conditional writes
are enforced with ``UPDATE ... WHERE version = :expected`` so two writers
racing on the same record cannot both succeed.
"""

from sqlalchemy import JSON, Column, Integer, MetaData, String, Table, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from purchasing.store.port import (
    Document,
    DocumentStore,
    VersionConflictError,
    check_version,
    collection_of,
    merge_data,
)

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("path", String(512), primary_key=True),
    Column("collection", String(512), nullable=False, index=True),
    Column("data", JSON, nullable=False),
    Column("version", Integer, nullable=False),
)


class SqlDocumentStore(DocumentStore):
    def __init__(self, database_uri: str, name: str | None = None, engine: Engine | None = None) -> None:
        self.database_uri = database_uri
        self.name = name or database_uri
        self.engine = engine or create_engine(database_uri)

    def setup_db(self) -> None:
        """Create the documents table if missing."""
        metadata.create_all(self.engine)

    def drop_db(self) -> None:
        metadata.drop_all(self.engine)

    def get(self, path: str) -> Document | None:
        path = path.strip("/")
        with self.engine.connect() as conn:
            row = conn.execute(select(documents).where(documents.c.path == path)).first()
        if row is None:
            return None
        return Document(path=row.path, data=dict(row.data), version=row.version)

    def set(
        self,
        path: str,
        data: dict,
        merge: bool = True,
        expected_version: int | None = None,
    ) -> Document:
        path = path.strip("/")
        try:
            with self.engine.begin() as conn:
                row = conn.execute(select(documents).where(documents.c.path == path)).first()
                check_version(path, expected_version, row.version if row else None)

                if row is None:
                    new_data = merge_data(None, data, merge=merge)
                    conn.execute(
                        documents.insert().values(
                            path=path,
                            collection=collection_of(path),
                            data=new_data,
                            version=1,
                        )
                    )
                    return Document(path=path, data=new_data, version=1)

                new_data = merge_data(dict(row.data), data, merge=merge)
                result = conn.execute(
                    update(documents)
                    .where(documents.c.path == path, documents.c.version == row.version)
                    .values(data=new_data, version=row.version + 1)
                )
                if result.rowcount != 1:
                    raise VersionConflictError(path, row.version, None)
                return Document(path=path, data=new_data, version=row.version + 1)
        except IntegrityError as exc:
            # Another writer inserted the same path first
            raise VersionConflictError(path, expected_version, None) from exc

    def delete(self, path: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(documents).where(documents.c.path == path.strip("/")))

    def list_collection(self, collection: str) -> list[Document]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(documents).where(documents.c.collection == collection.strip("/")).order_by(documents.c.path)
            ).all()
        return [Document(path=row.path, data=dict(row.data), version=row.version) for row in rows]

    def close(self) -> None:
        self.engine.dispose()
