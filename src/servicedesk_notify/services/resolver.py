"""Resolves recipient references to canonical user record ids.

A reference may name a user by the user document's id or by the user's
authentication id. The resolver looks every identifier up both ways, in
batches no larger than the store's "in" query limit, and merges the results
by record id. It also collects each resolved user's push tokens, grouped by
the delivery project that issued them.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from servicedesk_notify.interfaces import UserRecord, UserStore
from servicedesk_notify.models import NotificationContent
from servicedesk_notify.recipients import (
    RecipientRef,
    matches_auth_id,
    matches_record_id,
)
from servicedesk_notify.services.push_gateway import PushMessage, is_expo_push_token
from servicedesk_notify.utils.batching import chunked, dedupe

logger = logging.getLogger(__name__)

DEFAULT_IN_QUERY_LIMIT = 30


@dataclass
class Resolution:
    """Result of resolving a set of recipient references."""

    # Recipient reference -> canonical user record id
    record_ids: dict[RecipientRef, str] = field(default_factory=dict)
    # Push token -> user record id that holds it
    token_owners: dict[str, str] = field(default_factory=dict)
    # Push token -> every project namespace of its owner that lists it
    token_projects: dict[str, list[str]] = field(default_factory=dict)
    users: dict[str, UserRecord] = field(default_factory=dict)

    def canonical_ids(self, refs: Iterable[RecipientRef]) -> list[str]:
        """Canonical record ids for ``refs``, deduplicated, in first-seen order.

        References that matched no user are left out.
        """
        return dedupe([self.record_ids[ref] for ref in refs if ref in self.record_ids])

    def tokens_by_project(self) -> dict[str, list[str]]:
        """Tokens grouped by the first project that lists them.

        A token is sent once even when its owner lists it under several
        projects.
        """
        grouped: dict[str, list[str]] = {}
        for token, projects in self.token_projects.items():
            grouped.setdefault(projects[0], []).append(token)
        return grouped

    def messages_for(
        self, content: NotificationContent, sound: str | None = "default"
    ) -> dict[str, list[PushMessage]]:
        """One push message per known token, grouped by project namespace."""
        return {
            project: [
                PushMessage(
                    to=token,
                    title=content.title,
                    body=content.body,
                    data=dict(content.data),
                    sound=sound,
                )
                for token in tokens
            ]
            for project, tokens in self.tokens_by_project().items()
        }


class IdentifierResolver:
    """Turns recipient references into user records and push tokens."""

    def __init__(
        self, users: UserStore, in_query_limit: int = DEFAULT_IN_QUERY_LIMIT
    ) -> None:
        self._users = users
        self.in_query_limit = in_query_limit

    async def resolve(self, refs: Sequence[RecipientRef]) -> Resolution:
        """Resolve ``refs`` against the user collection.

        Identifiers that match no user are dropped without error.
        """
        resolution = Resolution()
        if not refs:
            return resolution

        record_id_values = dedupe([ref.id for ref in refs if matches_record_id(ref)])
        auth_id_values = dedupe([ref.id for ref in refs if matches_auth_id(ref)])

        id_chunks = list(chunked(record_id_values, self.in_query_limit))
        auth_chunks = list(chunked(auth_id_values, self.in_query_limit))
        results = await asyncio.gather(
            *(self._users.find_by_record_ids(chunk) for chunk in id_chunks),
            *(self._users.find_by_auth_ids(chunk) for chunk in auth_chunks),
        )
        found_by_id = [user for batch in results[: len(id_chunks)] for user in batch]
        found_by_auth = [user for batch in results[len(id_chunks) :] for user in batch]

        for user in [*found_by_id, *found_by_auth]:
            resolution.users.setdefault(user.id, user)

        matched_ids = {user.id for user in found_by_id}
        by_auth_id = {user.auth_id: user.id for user in found_by_auth if user.auth_id}
        for ref in refs:
            # A document id match wins over an auth id match for the same string
            if matches_record_id(ref) and ref.id in matched_ids:
                resolution.record_ids[ref] = ref.id
            elif matches_auth_id(ref) and ref.id in by_auth_id:
                resolution.record_ids[ref] = by_auth_id[ref.id]

        unresolved = {ref.id for ref in refs if ref not in resolution.record_ids}
        if unresolved:
            logger.info(
                f"No user record found for {len(unresolved)} identifiers: {sorted(unresolved)}"
            )

        for user in resolution.users.values():
            self._collect_tokens(user, resolution)

        logger.info(
            f"Resolved {len(refs)} references to {len(resolution.users)} users "
            f"holding {len(resolution.token_owners)} push tokens"
        )
        return resolution

    def _collect_tokens(self, user: UserRecord, resolution: Resolution) -> None:
        token_map = user.push_tokens
        if token_map is None:
            logger.debug(f"User {user.id} has no push tokens")
            return
        if not isinstance(token_map, dict):
            logger.warning(
                f"Skipping push tokens for user {user.id}: expected a mapping of "
                f"project to tokens, got {type(token_map).__name__}"
            )
            return

        for project, tokens in token_map.items():
            if not isinstance(tokens, list):
                logger.warning(
                    f"Skipping push tokens for user {user.id} under project {project}: "
                    f"expected a list, got {type(tokens).__name__}"
                )
                continue
            for token in tokens:
                if not is_expo_push_token(token):
                    logger.warning(f"Invalid push token found for user {user.id}: {token!r}")
                    continue
                owner = resolution.token_owners.get(token)
                if owner is None:
                    resolution.token_owners[token] = user.id
                    resolution.token_projects[token] = [project]
                elif owner != user.id:
                    logger.warning(
                        f"Push token {token} is registered to both {owner} and {user.id}; "
                        f"keeping {owner}"
                    )
                elif project not in resolution.token_projects[token]:
                    logger.debug(
                        f"Push token {token} of user {user.id} is also listed under {project}"
                    )
                    resolution.token_projects[token].append(project)
