"""
Identity Service - Core business logic for identity reconciliation
Matches incoming contact fragments against stored contacts, resolves them
to their group's root, merges groups a request bridges (oldest wins),
records new information as secondary contacts and builds the
consolidated view of the customer
"""

import logging
from typing import Iterable, List, Optional

from config import settings
from models.contact import LinkPrecedence
from schemas.contact import ContactRecord, ConsolidatedIdentity
from schemas.identify import IdentifyRequest, IdentifyResponse
from services.contact_store import ContactStore, StoreProvider
from services.errors import InvalidInputError

logger = logging.getLogger(__name__)


class IdentityService:
    """
    Core service for identity reconciliation logic
    Every call runs as one transaction of the injected store provider
    """

    def __init__(self, provider: StoreProvider, max_link_depth: Optional[int] = None):
        self.provider = provider
        self.max_link_depth = settings.MAX_LINK_DEPTH if max_link_depth is None else max_link_depth

    async def identify_contact(self, request: IdentifyRequest) -> IdentifyResponse:
        """HTTP-facing wrapper around identify()"""
        identity = await self.identify(request.email, request.phoneNumber)
        return IdentifyResponse.from_identity(identity)

    async def ping(self) -> bool:
        return await self.provider.ping()

    async def identify(self, email: Optional[str], phone: Optional[str]) -> ConsolidatedIdentity:
        """
        Main orchestration method for identity reconciliation

        Algorithm:
        1. Find existing contacts matching email or phone
        2. If no matches -> create new primary contact
        3. Resolve every match to the root of its group
        4. Oldest root is canonical; demote the other roots under it
           and flatten any chain longer than one link
        5. Record the request as a secondary contact if it carries new information
        6. Return consolidated contact information
        """
        email = email or None
        phone = phone or None
        if email is None and phone is None:
            raise InvalidInputError()

        async with self.provider.transaction() as store:
            matches = await store.find_matching(email, phone)

            if not matches:
                primary = await store.create(email, phone, None, LinkPrecedence.PRIMARY)
                logger.info(f"Created primary contact {primary.id}")
                return await self.build_consolidated_identity(store, primary)

            chains = [
                await self.walk_to_root(store, contact)
                for contact in sorted(matches, key=lambda c: c.age_key)
            ]
            roots = self.distinct_roots(chains)
            canonical = roots[0]

            if len(roots) > 1:
                await self.merge_groups(store, canonical, roots[1:])

            await self.flatten_chains(store, canonical, chains)

            if await self.has_new_information(store, canonical, email, phone):
                secondary = await store.create(email, phone, canonical.id, LinkPrecedence.SECONDARY)
                logger.info(f"Created secondary contact {secondary.id} under primary {canonical.id}")

            return await self.build_consolidated_identity(store, canonical)

    async def walk_to_root(self, store: ContactStore, contact: ContactRecord) -> List[ContactRecord]:
        """
        Follow linked_id upward until a contact without a parent is reached
        Returns the chain from `contact` to its root, both included

        A missing parent, a cycle or a chain longer than max_link_depth stops
        the walk at the last contact that could be loaded, which is then
        treated as the root
        """
        chain = [contact]
        visited = {contact.id}

        for _ in range(self.max_link_depth):
            current = chain[-1]
            if current.linked_id is None:
                return chain

            parent = await store.find_by_id(current.linked_id)
            if parent is None:
                logger.warning(
                    f"Inconsistent link: contact {current.id} points at missing contact "
                    f"{current.linked_id}; treating {current.id} as root"
                )
                return chain
            if parent.id in visited:
                logger.warning(
                    f"Inconsistent link: cycle through contact {parent.id}; "
                    f"treating {current.id} as root"
                )
                return chain

            visited.add(parent.id)
            chain.append(parent)

        if chain[-1].linked_id is not None:
            logger.warning(
                f"Inconsistent link: chain from contact {contact.id} exceeds "
                f"{self.max_link_depth} links; treating {chain[-1].id} as root"
            )
        return chain

    async def resolve_root(self, store: ContactStore, contact: ContactRecord) -> ContactRecord:
        chain = await self.walk_to_root(store, contact)
        return chain[-1]

    @staticmethod
    def distinct_roots(chains: Iterable[List[ContactRecord]]) -> List[ContactRecord]:
        """Distinct roots of the walked chains, oldest first"""
        roots = {}
        for chain in chains:
            roots.setdefault(chain[-1].id, chain[-1])
        return sorted(roots.values(), key=lambda c: c.age_key)

    async def flatten_chains(
        self,
        store: ContactStore,
        canonical: ContactRecord,
        chains: Iterable[List[ContactRecord]]
    ) -> None:
        """
        Move the children of every intermediate contact on a chain directly
        under the canonical root. Chains left by an interrupted merge are
        longer than one link; chains ending in an inconsistent link are left alone
        """
        flattened = set()
        for chain in chains:
            if chain[-1].linked_id is not None:
                continue
            for intermediate in chain[1:-1]:
                if intermediate.id in flattened or intermediate.id == canonical.id:
                    continue
                flattened.add(intermediate.id)
                moved = await store.repoint_children(intermediate.id, canonical.id)
                logger.warning(
                    f"Flattened link chain: {moved} contacts under {intermediate.id} "
                    f"moved to primary {canonical.id}"
                )

    async def merge_groups(
        self,
        store: ContactStore,
        canonical: ContactRecord,
        others: Iterable[ContactRecord]
    ) -> None:
        """
        Demote each other root to a secondary of the canonical root and move
        its children along, so the merged group stays one level deep
        """
        for root in sorted(others, key=lambda c: c.age_key):
            if root.id == canonical.id:
                continue
            await store.update_link(root.id, canonical.id, LinkPrecedence.SECONDARY)
            moved = await store.repoint_children(root.id, canonical.id)
            logger.info(
                f"Merged contact {root.id} into primary {canonical.id} "
                f"({moved} linked contacts repointed)"
            )

    async def has_new_information(
        self,
        store: ContactStore,
        canonical: ContactRecord,
        email: Optional[str],
        phone: Optional[str]
    ) -> bool:
        """
        Check whether the email or the phone is unknown to the group
        Membership is tested per field, so a pairing split across two
        existing contacts is not new information
        """
        group = await store.find_group(canonical.id)
        known_emails = {c.email for c in group if c.email}
        known_phones = {c.phone_number for c in group if c.phone_number}

        has_new_email = email is not None and email not in known_emails
        has_new_phone = phone is not None and phone not in known_phones

        return has_new_email or has_new_phone

    async def build_consolidated_identity(
        self,
        store: ContactStore,
        primary: ContactRecord
    ) -> ConsolidatedIdentity:
        """
        Build the consolidated view with the primary contact's own email and
        phone first, followed by the secondaries' values in creation order
        """
        secondaries = sorted(await store.find_by_parent(primary.id), key=lambda c: c.age_key)

        emails = []
        phone_numbers = []

        for contact in [primary, *secondaries]:
            if contact.email and contact.email not in emails:
                emails.append(contact.email)
            if contact.phone_number and contact.phone_number not in phone_numbers:
                phone_numbers.append(contact.phone_number)

        return ConsolidatedIdentity(
            primary_id=primary.id,
            emails=emails,
            phone_numbers=phone_numbers,
            secondary_ids=[c.id for c in secondaries],
        )
