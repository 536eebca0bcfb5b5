"""
Tests for ticket comments and file attachments.
"""

import pytest
import pytest_asyncio

from tracker.core.results import ErrorKind
from tracker.storage.base import Collections, StorageError
from tracker.workflow.files import storage_key


@pytest_asyncio.fixture
async def assigned(engine, email, ticket, owner, alice):
    """The fixture ticket with alice assigned."""
    result = (await engine.tickets.assign(owner, ticket.id, [alice.user_id])).unwrap()
    email.clear()
    return result


# =============================================================================
# Comments
# =============================================================================


class TestComments:
    @pytest.mark.asyncio
    async def test_comment_notifies_assignees(self, engine, email, assigned, owner):
        result = await engine.comments.create_comment(owner, assigned.id, "Any news?")

        assert result.ok
        assert result.value.author_id == owner.user_id
        assert result.value.text == "Any news?"
        assert email.recipients() == ["alice@example.com"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_comment(self, engine, ticket, bob, admin):
        assert (await engine.comments.create_comment(bob, ticket.id, "hi")).error == ErrorKind.FORBIDDEN
        assert (await engine.comments.create_comment(admin, ticket.id, "hi")).error == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_author_edits(self, engine, email, assigned, alice):
        comment = (await engine.comments.create_comment(alice, assigned.id, "draft")).unwrap()
        email.clear()

        result = await engine.comments.edit_comment(alice, comment.id, "final")

        assert result.value.text == "final"
        assert sorted(email.recipients()) == ["alice@example.com", "owner@example.com"]

    @pytest.mark.asyncio
    async def test_only_author_edits(self, engine, ticket, owner, admin, alice):
        comment = (await engine.comments.create_comment(alice, ticket.id, "mine")).unwrap()

        assert (await engine.comments.edit_comment(owner, comment.id, "x")).error == ErrorKind.FORBIDDEN
        assert (await engine.comments.edit_comment(admin, comment.id, "x")).error == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_author_who_left_cannot_edit(self, engine, project, ticket, alice):
        comment = (await engine.comments.create_comment(alice, ticket.id, "mine")).unwrap()
        await engine.membership.leave(alice, project.id)

        assert (await engine.comments.edit_comment(alice, comment.id, "x")).error == ErrorKind.FORBIDDEN
        assert (await engine.comments.delete_comment(alice, comment.id)).error == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_delete_by_author_or_admin(self, engine, metadata, ticket, owner, admin, alice):
        first = (await engine.comments.create_comment(alice, ticket.id, "one")).unwrap()
        second = (await engine.comments.create_comment(alice, ticket.id, "two")).unwrap()

        assert (await engine.comments.delete_comment(owner, first.id)).error == ErrorKind.FORBIDDEN
        assert (await engine.comments.delete_comment(alice, first.id)).ok
        assert (await engine.comments.delete_comment(admin, second.id)).ok
        assert await metadata.query(Collections.COMMENTS) == []

    @pytest.mark.asyncio
    async def test_delete_unknown(self, engine, alice):
        assert (await engine.comments.delete_comment(alice, 999)).error == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_list_comments(self, engine, ticket, owner, alice, admin, bob):
        for text in ("a", "b", "c"):
            await engine.comments.create_comment(alice, ticket.id, text)

        page = (await engine.comments.list_comments(owner, ticket.id, limit=2)).unwrap()
        rest = (await engine.comments.list_comments(admin, ticket.id, cursor=page.next_cursor)).unwrap()

        assert [c.text for c in page.items] == ["a", "b"]
        assert [c.text for c in rest.items] == ["c"]
        assert (await engine.comments.list_comments(bob, ticket.id)).error == ErrorKind.FORBIDDEN


# =============================================================================
# Files
# =============================================================================


class TestStorageKey:
    def test_key_layout(self):
        key = storage_key(3, "launch plan.pdf")
        assert key.startswith("tickets/3/")
        assert key.endswith("-launch_plan.pdf")

    def test_path_components_are_dropped(self):
        key = storage_key(3, "../../etc/passwd")
        assert key.startswith("tickets/3/")
        assert key.endswith("-passwd")
        assert ".." not in key

    def test_keys_are_unique(self):
        assert storage_key(3, "a.txt") != storage_key(3, "a.txt")


class TestFiles:
    @pytest.mark.asyncio
    async def test_attach(self, engine, storage, email, assigned, owner):
        result = await engine.files.attach_file(owner, assigned.id, "notes.txt", b"hello", "text/plain")

        assert result.ok
        attachment = result.value
        assert attachment.size == 5
        assert attachment.uploader_id == owner.user_id
        assert await storage.content.get_metadata(attachment.storage_key) is not None
        assert sorted(email.recipients()) == ["alice@example.com", "owner@example.com"]

    @pytest.mark.asyncio
    async def test_empty_file(self, engine, ticket, owner):
        result = await engine.files.attach_file(owner, ticket.id, "empty.txt", b"")
        assert result.error == ErrorKind.INVALID_OPERATION

    @pytest.mark.asyncio
    async def test_outsider_cannot_attach(self, engine, ticket, bob):
        result = await engine.files.attach_file(bob, ticket.id, "x.txt", b"x")
        assert result.error == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_object_removed_when_row_fails(self, engine, storage, metadata, ticket, owner, monkeypatch, tmp_path):
        real_insert = metadata.insert

        async def failing_insert(collection, data):
            if collection == Collections.FILES:
                raise StorageError("database unavailable")
            return await real_insert(collection, data)

        monkeypatch.setattr(metadata, "insert", failing_insert)

        result = await engine.files.attach_file(owner, ticket.id, "x.txt", b"x")

        assert result.error == ErrorKind.DEPENDENCY_FAILURE
        assert list((tmp_path / "files").rglob("*.txt")) == []

    @pytest.mark.asyncio
    async def test_uploader_deletes(self, engine, storage, ticket, alice):
        attachment = (await engine.files.attach_file(alice, ticket.id, "x.txt", b"x")).unwrap()

        result = await engine.files.delete_file(alice, attachment.id)

        assert result.ok
        assert await storage.content.get_metadata(attachment.storage_key) is None
        assert (await engine.files.get_file(alice, attachment.id)).error == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_owner_and_admin_delete(self, engine, ticket, alice, owner, admin):
        first = (await engine.files.attach_file(alice, ticket.id, "a.txt", b"a")).unwrap()
        second = (await engine.files.attach_file(alice, ticket.id, "b.txt", b"b")).unwrap()

        assert (await engine.files.delete_file(owner, first.id)).ok
        assert (await engine.files.delete_file(admin, second.id)).ok

    @pytest.mark.asyncio
    async def test_other_member_cannot_delete(self, engine, ticket, owner, alice):
        attachment = (await engine.files.attach_file(owner, ticket.id, "x.txt", b"x")).unwrap()

        result = await engine.files.delete_file(alice, attachment.id)

        assert result.error == ErrorKind.FORBIDDEN

    @pytest.mark.asyncio
    async def test_list_and_get(self, engine, ticket, owner, admin, bob):
        attachment = (await engine.files.attach_file(owner, ticket.id, "x.txt", b"x")).unwrap()

        assert [f.id for f in (await engine.files.list_files(admin, ticket.id)).value] == [attachment.id]
        assert (await engine.files.get_file(owner, attachment.id)).value.filename == "x.txt"
        assert (await engine.files.get_file(bob, attachment.id)).error == ErrorKind.FORBIDDEN
