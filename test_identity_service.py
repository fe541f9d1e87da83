"""
Tests for the identity reconciliation engine, run against the in-memory store
"""

import asyncio
import logging

import pytest

from models.contact import LinkPrecedence
from services.errors import InvalidInputError
from services.identity_service import IdentityService

A = "lorraine@hillvalley.edu"
B = "mcfly@hillvalley.edu"
C = "biff@hillvalley.edu"
P1 = "123456"
P2 = "717171"


class TestPrimaryCreation:

    async def test_no_match_creates_primary(self, service, store):
        identity = await service.identify(A, None)

        contacts = store.all()
        assert len(contacts) == 1
        assert contacts[0].link_precedence == LinkPrecedence.PRIMARY
        assert contacts[0].linked_id is None
        assert identity.primary_id == contacts[0].id
        assert identity.emails == [A]
        assert identity.phone_numbers == []
        assert identity.secondary_ids == []

    async def test_phone_only_request_creates_primary(self, service, store):
        identity = await service.identify(None, P1)

        assert identity.emails == []
        assert identity.phone_numbers == [P1]
        assert store.all()[0].phone_number == P1

    @pytest.mark.parametrize("email, phone", [(None, None), ("", ""), ("", None)])
    async def test_missing_email_and_phone_is_invalid(self, service, store, email, phone):
        with pytest.raises(InvalidInputError):
            await service.identify(email, phone)
        assert store.all() == []


class TestLinking:

    async def test_identical_repeat_creates_nothing(self, service, store):
        first = await service.identify(A, P1)
        second = await service.identify(A, P1)

        assert len(store.all()) == 1
        assert first == second

    async def test_new_phone_creates_secondary(self, service, store, clock):
        primary = await service.identify(A, P1)
        clock.advance()

        identity = await service.identify(A, P2)

        secondary = store.all()[1]
        assert secondary.link_precedence == LinkPrecedence.SECONDARY
        assert secondary.linked_id == primary.primary_id
        assert identity.primary_id == primary.primary_id
        assert identity.emails == [A]
        assert identity.phone_numbers == [P1, P2]
        assert identity.secondary_ids == [secondary.id]

    async def test_known_email_alone_creates_nothing(self, service, store):
        await service.identify(A, P1)
        await service.identify(B, P1)

        identity = await service.identify(B, None)

        assert len(store.all()) == 2
        assert identity.emails == [A, B]

    async def test_split_pairing_is_not_new_information(self, service, store):
        primary = await store.create(A, P1, None, LinkPrecedence.PRIMARY)
        await store.create(B, P2, primary.id, LinkPrecedence.SECONDARY)

        identity = await service.identify(A, P2)

        assert len(store.all()) == 2
        assert identity.primary_id == primary.id
        assert identity.emails == [A, B]
        assert identity.phone_numbers == [P1, P2]

    async def test_match_through_secondary_resolves_to_primary(self, service, store):
        await service.identify(A, P1)
        await service.identify(B, P1)

        identity = await service.identify(B, P2)

        assert identity.primary_id == 1
        assert identity.secondary_ids == [2, 3]
        assert all(c.linked_id == 1 for c in store.all()[1:])


class TestMerge:

    async def test_bridging_request_demotes_newer_primary(self, service, store, clock):
        first = await service.identify(A, None)
        clock.advance()
        second = await service.identify(None, P1)

        identity = await service.identify(A, P1)

        demoted = await store.find_by_id(second.primary_id)
        assert demoted.link_precedence == LinkPrecedence.SECONDARY
        assert demoted.linked_id == first.primary_id
        assert identity.primary_id == first.primary_id
        assert identity.secondary_ids == [second.primary_id]
        assert identity.emails == [A]
        assert identity.phone_numbers == [P1]
        assert len(store.all()) == 2

    async def test_repeating_merge_request_writes_nothing(self, service, store, clock):
        await service.identify(A, None)
        clock.advance()
        await service.identify(None, P1)
        merged = await service.identify(A, P1)
        snapshot = store.all()

        clock.advance(60)
        repeated = await service.identify(A, P1)

        assert store.all() == snapshot
        assert repeated == merged

    async def test_children_of_demoted_primary_are_repointed(self, service, store, clock):
        await service.identify(A, None)
        clock.advance()
        await service.identify(None, P1)
        clock.advance()
        child = await service.identify(B, P1)
        assert child.primary_id == 2
        assert child.secondary_ids == [3]

        identity = await service.identify(A, P1)

        assert (await store.find_by_id(3)).linked_id == 1
        assert identity.primary_id == 1
        assert identity.secondary_ids == [2, 3]
        assert identity.emails == [A, B]
        assert identity.phone_numbers == [P1]

    async def test_older_created_at_wins_over_lower_id(self, service, store, clock):
        clock.advance(3600)
        later = await store.create(A, None, None, LinkPrecedence.PRIMARY)
        clock.advance(-7200)
        earlier = await store.create(None, P1, None, LinkPrecedence.PRIMARY)
        assert later.id < earlier.id

        identity = await service.identify(A, P1)

        assert identity.primary_id == earlier.id
        assert (await store.find_by_id(later.id)).linked_id == earlier.id

    async def test_created_at_tie_is_broken_by_lowest_id(self, service, store):
        # the fixture clock never moves, so every contact shares created_at
        await service.identify(None, P1)
        await service.identify(A, None)

        identity = await service.identify(A, P1)

        assert identity.primary_id == 1
        assert identity.secondary_ids == [2]
        assert identity.phone_numbers == [P1]
        assert identity.emails == [A]

    async def test_three_groups_merge_under_the_oldest(self, service, store, clock):
        first = await store.create(A, None, None, LinkPrecedence.PRIMARY)
        clock.advance()
        second = await store.create(A, None, None, LinkPrecedence.PRIMARY)
        clock.advance()
        third = await store.create(None, P1, None, LinkPrecedence.PRIMARY)
        clock.advance()
        orphan_child = await store.create(C, P2, third.id, LinkPrecedence.SECONDARY)

        identity = await service.identify(A, P1)

        assert identity.primary_id == first.id
        assert identity.secondary_ids == [second.id, third.id, orphan_child.id]
        assert identity.emails == [A, C]
        assert identity.phone_numbers == [P1, P2]
        assert all(c.linked_id == first.id for c in store.all()[1:])


class TestConsolidatedView:

    async def test_primary_values_come_first(self, service, store, clock):
        await store.create(B, None, None, LinkPrecedence.PRIMARY)
        clock.advance()
        await store.create(A, P2, 1, LinkPrecedence.SECONDARY)
        clock.advance()
        await store.create(C, P1, 1, LinkPrecedence.SECONDARY)

        identity = await service.identify(B, None)

        assert identity.emails == [B, A, C]
        assert identity.phone_numbers == [P2, P1]
        assert identity.secondary_ids == [2, 3]

    async def test_duplicate_values_are_suppressed(self, service, store):
        await store.create(A, P1, None, LinkPrecedence.PRIMARY)
        await store.create(A, P2, 1, LinkPrecedence.SECONDARY)
        await store.create(B, P1, 1, LinkPrecedence.SECONDARY)

        identity = await service.identify(A, None)

        assert identity.emails == [A, B]
        assert identity.phone_numbers == [P1, P2]

    async def test_soft_deleted_contacts_are_ignored(self, service, store):
        await store.create(A, P1, None, LinkPrecedence.PRIMARY)
        store.soft_delete(1)

        identity = await service.identify(A, P1)

        assert identity.primary_id == 2
        assert identity.secondary_ids == []

    async def test_identify_contact_renders_response(self, service):
        from schemas.identify import IdentifyRequest

        response = await service.identify_contact(IdentifyRequest(email=A, phoneNumber=P1))

        assert response.model_dump() == {
            "contact": {
                "primaryContatctId": 1,
                "emails": [A],
                "phoneNumbers": [P1],
                "secondaryContactIds": [],
            }
        }


class TestInconsistentLinks:

    async def test_missing_parent_is_treated_as_root(self, service, store, caplog):
        await store.create(A, P1, 99, LinkPrecedence.SECONDARY)

        with caplog.at_level(logging.WARNING, logger="services.identity_service"):
            identity = await service.identify(A, None)

        assert identity.primary_id == 1
        assert identity.emails == [A]
        assert identity.secondary_ids == []
        assert "missing contact 99" in caplog.text
        assert len(store.all()) == 1

    async def test_cycle_stops_at_last_valid_contact(self, service, store, caplog):
        await store.create(A, None, None, LinkPrecedence.PRIMARY)
        await store.create(B, None, 1, LinkPrecedence.SECONDARY)
        await store.update_link(1, 2, LinkPrecedence.SECONDARY)

        with caplog.at_level(logging.WARNING, logger="services.identity_service"):
            identity = await service.identify(A, None)

        assert identity.primary_id == 2
        assert identity.secondary_ids == [1]
        assert "cycle" in caplog.text
        assert len(store.all()) == 2

    async def test_walk_is_bounded_by_max_link_depth(self, store, caplog):
        await store.create(A, None, None, LinkPrecedence.PRIMARY)
        for parent_id in (1, 2, 3):
            await store.create(None, f"55500{parent_id}", parent_id, LinkPrecedence.SECONDARY)
        leaf = await store.find_by_id(4)

        shallow = IdentityService(store, max_link_depth=2)
        with caplog.at_level(logging.WARNING, logger="services.identity_service"):
            root = await shallow.resolve_root(store, leaf)

        assert root.id == 2
        assert "exceeds 2 links" in caplog.text
        assert (await IdentityService(store).resolve_root(store, leaf)).id == 1

    async def test_zero_max_link_depth_is_honoured(self, store, caplog):
        await store.create(A, None, None, LinkPrecedence.PRIMARY)
        child = await store.create(None, P1, 1, LinkPrecedence.SECONDARY)

        pinned = IdentityService(store, max_link_depth=0)
        with caplog.at_level(logging.WARNING, logger="services.identity_service"):
            root = await pinned.resolve_root(store, child)

        assert pinned.max_link_depth == 0
        assert root.id == child.id
        assert "exceeds 0 links" in caplog.text

    async def test_interrupted_merge_is_repaired(self, service, store, clock):
        # contact 2 was demoted under 1 but its child 3 was never repointed
        await store.create(A, None, None, LinkPrecedence.PRIMARY)
        clock.advance()
        await store.create(None, P1, None, LinkPrecedence.PRIMARY)
        clock.advance()
        await store.create(B, P1, 2, LinkPrecedence.SECONDARY)
        await store.update_link(2, 1, LinkPrecedence.SECONDARY)

        identity = await service.identify(B, None)

        assert identity.primary_id == 1
        assert identity.secondary_ids == [2, 3]
        assert (await store.find_by_id(3)).linked_id == 1
        assert len(store.all()) == 3


class TestConcurrentRequests:

    async def test_overlapping_requests_are_serialized(self, service, store):
        # the store was built outside the event loop by a sync fixture
        first, second = await asyncio.gather(service.identify(A, P1), service.identify(A, P1))

        assert len(store.all()) == 1
        assert first == second
        assert first.secondary_ids == []
