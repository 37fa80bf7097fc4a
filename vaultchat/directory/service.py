import logging

from vaultchat.auth.identity import IdentityAccessor
from vaultchat.core.exceptions import BackendUnavailable, NotFound, StoreError
from vaultchat.core.store import DocumentStore
from vaultchat.models.user_models import DirectoryEntry, UserProfile
from vaultchat.utils import paths
from vaultchat.utils.timestamps import format_timestamp

logger = logging.getLogger(__name__)

# Upper bound for prefix ranges: [q, q + MAX_SUFFIX) covers every string starting with q.
MAX_SUFFIX = "\uf8ff"


class UserDirectory:
    """Searchable profile records under `users/{uid}`."""

    def __init__(self, store: DocumentStore, identity: IdentityAccessor, clock):
        self.store = store
        self.identity = identity
        self.clock = clock

    async def search(self, query: str) -> list[UserProfile]:
        """
        Search the directory, excluding the signed-in user.

        Stages are tried in order and the first one with any hit wins:
        exact email, exact lowercase email, lowercase name prefix, raw name
        prefix. A stage the store rejects is skipped; an unreachable store
        is raised to the caller.
        """
        if not query.strip():
            return []

        users = self.store.collection(paths.USERS)
        lowered = query.lower()
        stages = [
            ("email", users.where("email", "==", query)),
            ("searchable_email", users.where("searchableEmail", "==", lowered)),
            (
                "searchable_name",
                users.where("searchableName", ">=", lowered).where("searchableName", "<", lowered + MAX_SUFFIX),
            ),
            ("name", users.where("name", ">=", query).where("name", "<", query + MAX_SUFFIX)),
        ]

        current_id = self.identity.current_principal_id()

        for stage, stage_query in stages:
            try:
                documents = await self.store.query(stage_query)
            except BackendUnavailable:
                raise
            except StoreError as e:
                logger.warning(f"user_search_stage_failed stage={stage} error={e.message}")
                continue

            if documents:
                logger.info(f"user_search_hit stage={stage} count={len(documents)}")
                return [
                    UserProfile.from_document(doc.id, doc.data)
                    for doc in documents
                    if doc.id != current_id
                ]

        logger.info("user_search_miss")
        return []

    async def get_profile(self, user_id: str) -> UserProfile:
        document = await self.store.get(paths.user_doc(user_id))
        if not document.exists:
            raise NotFound("User not found.")
        return UserProfile.from_document(user_id, document.data)

    async def ensure_directory_entry(self) -> bool:
        """
        Make sure the signed-in user has a searchable directory record.

        A record that already carries an email is left alone. Otherwise the
        record is merge-written and the user's chat list namespace gets its
        placeholder if it is still empty.
        """
        principal = self.identity.require_principal()
        user_path = paths.user_doc(principal.id)

        try:
            document = await self.store.get(user_path)
            if document.exists and isinstance(document.get("email"), str):
                logger.info(f"directory_entry_present user_id={principal.id}")
                return True

            entry = DirectoryEntry.for_principal(principal)
            entry.last_updated = self.clock()
            await self.store.set(user_path, entry.to_document(), merge=True)
            logger.info(f"directory_entry_saved user_id={principal.id}")

            return await self._ensure_chat_namespace(principal.id)
        except StoreError as e:
            logger.error(f"directory_entry_failed user_id={principal.id} error={e.message}")
            return False

    async def _ensure_chat_namespace(self, user_id: str) -> bool:
        chats = self.store.collection(paths.user_chats(user_id)).limit(1)
        if await self.store.query(chats):
            return True

        await self.store.set(
            paths.user_chat_ref(user_id, paths.PLACEHOLDER_ID),
            {"placeholder": True, "created": format_timestamp(self.clock())},
        )
        logger.info(f"chat_namespace_created user_id={user_id}")
        return True
