"""Repository for the user collection."""

from collections.abc import Mapping, Sequence
from typing import Any

from google.cloud.firestore_v1 import ArrayRemove, AsyncQuery
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from servicedesk_notify.interfaces import UserRecord

from .base import BaseRepository


class UserRepository(BaseRepository):
    """Looks users up by either id form and prunes their push tokens."""

    def _to_record(self, record_id: str, data: dict[str, Any] | None) -> UserRecord:
        data = data or {}
        auth_id = data.get(self._config.auth_id_field)
        return UserRecord(
            id=record_id,
            auth_id=auth_id if isinstance(auth_id, str) else None,
            push_tokens=data.get(self._config.push_tokens_field),
        )

    async def _run(self, query: AsyncQuery) -> list[UserRecord]:
        return [
            self._to_record(snapshot.id, snapshot.to_dict())
            async for snapshot in query.stream()
        ]

    async def find_by_record_ids(self, record_ids: Sequence[str]) -> list[UserRecord]:
        if not record_ids:
            return []
        refs = [self.users.document(record_id) for record_id in record_ids]
        query = self.users.where(
            filter=FieldFilter(FieldPath.document_id(), "in", refs)
        )
        return await self._run(query)

    async def find_by_auth_ids(self, auth_ids: Sequence[str]) -> list[UserRecord]:
        if not auth_ids:
            return []
        query = self.users.where(
            filter=FieldFilter(self._config.auth_id_field, "in", list(auth_ids))
        )
        return await self._run(query)

    async def remove_tokens(
        self, record_id: str, tokens_by_project: Mapping[str, Sequence[str]]
    ) -> None:
        updates = {
            # Project namespaces may contain '@', '/' or '-', which need quoting
            FieldPath(self._config.push_tokens_field, project).to_api_repr(): ArrayRemove(
                list(tokens)
            )
            for project, tokens in tokens_by_project.items()
            if tokens
        }
        if not updates:
            return
        await self.users.document(record_id).update(updates)
        self._logger.info(
            f"Removed {sum(len(t) for t in tokens_by_project.values())} push tokens from user {record_id}"
        )
