"""
End-to-end revision capture through SQLAlchemy flushes.

Each test gets a fresh schema; rows are written by the mapper hooks on the
flush connection and read back in a separate session.
"""

import asyncio
import json

import pytest
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from papertrail import (
    ActorMissingError,
    MutationOptions,
    RequiredMetaDataMissingError,
    RevisionMissingError,
    actor_context,
    mutation_options,
    set_mutation_options,
)
from papertrail.db import get_session
from papertrail.engine.errors import ModelNotRegistered
from papertrail.observability.metrics import metrics
from papertrail.utils.time import utc_now


async def _create_person(harness, actor="alice", **values):
    async with harness.session_factory() as session:
        with actor_context(actor):
            person = harness.person(**values)
            session.add(person)
            await session.commit()
    return person


@pytest.mark.asyncio
async def test_create_writes_first_revision(harness):
    person = await _create_person(harness, name="Ada", age=36)

    assert person.revision == 1
    revisions = await harness.revisions()
    assert len(revisions) == 1

    revision = revisions[0]
    assert revision.model == "Person"
    assert revision.document_id == person.id
    assert revision.operation == "create"
    assert revision.revision == 1
    assert revision.user_id == "alice"
    assert revision.document["name"] == "Ada"
    assert revision.document["age"] == 36
    assert revision.document == {"name": "Ada", "age": 36, "email": None}
    assert "id" not in revision.document
    assert "revision" not in revision.document
    assert "created_at" not in revision.document
    assert metrics.counter("papertrail.revisions.created") == 1


@pytest.mark.asyncio
async def test_update_increments_revision(harness):
    person = await _create_person(harness, name="Ada", age=36)

    async with harness.session_factory() as session:
        with actor_context("bob"):
            person = await session.get(harness.person, person.id)
            person.name = "Grace"
            await session.commit()

    assert person.revision == 2
    revisions = await harness.revisions(document_id=person.id)
    assert [r.revision for r in revisions] == [1, 2]
    assert revisions[1].operation == "update"
    assert revisions[1].user_id == "bob"
    assert revisions[1].document["name"] == "Grace"


@pytest.mark.asyncio
async def test_successive_updates_are_dense(harness):
    person = await _create_person(harness, name="Ada", age=1)

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person.id)
            for age in range(2, 6):
                person.age = age
                await session.flush()
            await session.commit()

    revisions = await harness.revisions(document_id=person.id)
    assert [r.revision for r in revisions] == [1, 2, 3, 4, 5]
    assert [r.document["age"] for r in revisions] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_no_op_update_writes_nothing(harness):
    person = await _create_person(harness, name="Ada")

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person.id)
            person.name = "Ada"
            person.revision = 50
            await session.commit()

    async with harness.session_factory() as session:
        stored = await session.get(harness.person, person.id)
        assert stored.revision == 1
    assert len(await harness.revisions()) == 1


@pytest.mark.asyncio
async def test_no_op_update_of_expired_instance_writes_nothing(harness):
    """Assignments after a commit expired the instance are diffed against the stored row."""
    sessions = async_sessionmaker(harness.engine, expire_on_commit=True)

    async with sessions() as session:
        with actor_context("alice"):
            person = harness.person(name="Ada", age=36)
            session.add(person)
            await session.commit()

            person.name = "Ada"
            await session.commit()
            assert len(await harness.revisions()) == 1

            person.name = "Grace"
            await session.commit()

    revisions = await harness.revisions()
    assert [r.revision for r in revisions] == [1, 2]
    assert revisions[1].document == {"name": "Grace", "age": 36, "email": None}


@pytest.mark.asyncio
async def test_destroy_of_expired_instance_keeps_last_state(harness):
    sessions = async_sessionmaker(harness.engine, expire_on_commit=True)

    async with sessions() as session:
        with actor_context("alice"):
            person = harness.person(name="Ada", age=36)
            session.add(person)
            await session.commit()

            await session.delete(person)
            await session.commit()

    revisions = await harness.revisions()
    assert [r.operation for r in revisions] == ["create", "destroy"]
    assert revisions[1].revision == 2
    assert revisions[1].document == {"name": "Ada", "age": 36, "email": None}


@pytest.mark.asyncio
async def test_excluded_field_change_writes_nothing(harness):
    person = await _create_person(harness, name="Ada")

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person.id)
            person.updated_at = utc_now()
            await session.commit()

    assert len(await harness.revisions()) == 1


@pytest.mark.asyncio
async def test_destroy_writes_final_revision(harness):
    person = await _create_person(harness, name="Ada", age=36)

    async with harness.session_factory() as session:
        with actor_context("carol"):
            person = await session.get(harness.person, person.id)
            await session.delete(person)
            await session.commit()

    revisions = await harness.revisions(document_id=person.id)
    assert [r.operation for r in revisions] == ["create", "destroy"]
    assert revisions[1].revision == 2
    assert revisions[1].user_id == "carol"
    assert revisions[1].document["name"] == "Ada"


@pytest.mark.asyncio
async def test_per_instance_opt_out(harness):
    person = await _create_person(harness, name="Ada")

    async with harness.session_factory() as session:
        person = await session.get(harness.person, person.id)
        person.name = "Grace"
        set_mutation_options(person, no_paper_trail=True)
        await session.commit()

    assert person.revision == 1
    assert len(await harness.revisions()) == 1


@pytest.mark.asyncio
async def test_session_opt_out(harness):
    async with harness.session_factory() as session:
        with mutation_options(session, no_paper_trail=True):
            session.add(harness.person(name="Ada"))
            await session.flush()
        session.add(harness.person(name="Grace"))
        await session.commit()

    revisions = await harness.revisions()
    assert [r.document["name"] for r in revisions] == ["Grace"]


@pytest.mark.asyncio
async def test_call_option_supplies_actor(harness):
    async with harness.session_factory() as session:
        with mutation_options(session, user_id=42):
            session.add(harness.person(name="Ada"))
            await session.commit()

    revisions = await harness.revisions()
    assert revisions[0].user_id == "42"


@pytest.mark.asyncio
async def test_ambient_actor_beats_call_option(harness):
    async with harness.session_factory() as session:
        with actor_context("alice"), mutation_options(session, user_id="bob"):
            session.add(harness.person(name="Ada"))
            await session.commit()

    assert (await harness.revisions())[0].user_id == "alice"


@pytest.mark.asyncio
async def test_model_without_revision_column_gets_one(harness):
    async with harness.session_factory() as session:
        tag = harness.tag(label="urgent")
        session.add(tag)
        await session.commit()

    assert tag.revision == 1
    revisions = await harness.revisions(model="Tag")
    assert revisions[0].document == {"label": "urgent"}


@pytest.mark.asyncio
async def test_revisions_relationship(harness):
    person = await _create_person(harness, name="Ada")
    async with harness.session_factory() as session:
        with actor_context("alice"):
            stored = await session.get(harness.person, person.id)
            stored.name = "Grace"
            await session.commit()
    # Same id on another model must not show up
    async with harness.session_factory() as session:
        session.add(harness.tag(id=person.id, label="x"))
        await session.commit()

    async with harness.session_factory() as session:
        stmt = (
            select(harness.person)
            .where(harness.person.id == person.id)
            .options(selectinload(harness.person.revisions))
        )
        loaded = (await session.execute(stmt)).scalar_one()

    assert [r.revision for r in loaded.revisions] == [1, 2]
    assert {r.model for r in loaded.revisions} == {"Person"}


@pytest.mark.asyncio
async def test_rollback_discards_revisions(harness):
    async with harness.session_factory() as session:
        with actor_context("alice"):
            session.add(harness.person(name="Ada"))
            await session.flush()
            await session.rollback()

    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_missing_actor_is_tolerated_by_default(harness, caplog):
    person = await _create_person(harness, actor=None, name="Ada")

    async with harness.session_factory() as session:
        person = await session.get(harness.person, person.id)
        person.name = "Grace"
        await session.commit()

    revisions = await harness.revisions()
    assert [r.user_id for r in revisions] == [None, None]
    assert "No actor for update" in caplog.text


@pytest.mark.asyncio
async def test_missing_actor_fails_hard(make_trail):
    harness = await make_trail(fail_hard=True)
    person = await _create_person(harness, actor=None, name="Ada")
    person_id = person.id

    async with harness.session_factory() as session:
        person = await session.get(harness.person, person_id)
        person.name = "Grace"
        with pytest.raises(ActorMissingError):
            await session.commit()
        await session.rollback()

    async with harness.session_factory() as session:
        stored = await session.get(harness.person, person_id)
        assert stored.name == "Ada"
        assert stored.revision == 1
    assert len(await harness.revisions()) == 1


@pytest.mark.asyncio
async def test_row_without_revision_fails_hard(make_trail):
    harness = await make_trail(fail_hard=True)
    async with harness.session_factory() as session:
        result = await session.execute(
            insert(harness.person.__table__).values(name="Legacy", revision=None)
        )
        person_id = result.inserted_primary_key[0]
        await session.commit()

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person_id)
            person.name = "Updated"
            with pytest.raises(RevisionMissingError):
                await session.commit()
            await session.rollback()

    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_row_without_revision_restarts_when_permissive(harness):
    async with harness.session_factory() as session:
        result = await session.execute(
            insert(harness.person.__table__).values(name="Legacy", revision=None)
        )
        person_id = result.inserted_primary_key[0]
        await session.commit()

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person_id)
            person.name = "Updated"
            await session.commit()

    assert person.revision == 1
    assert [r.revision for r in await harness.revisions()] == [1]


@pytest.mark.asyncio
async def test_meta_data_columns(make_trail):
    harness = await make_trail(meta_data_fields={"tenant": True, "reason": False})

    async with harness.session_factory() as session:
        with actor_context("alice", {"tenant": "acme"}), mutation_options(
            session, meta_data={"reason": "signup"}
        ):
            session.add(harness.person(name="Ada"))
            await session.commit()

    revision = (await harness.revisions())[0]
    assert revision.tenant == "acme"
    assert revision.reason == "signup"


@pytest.mark.asyncio
async def test_required_meta_data_fails_hard(make_trail):
    harness = await make_trail(fail_hard=True, meta_data_fields={"tenant": True})

    async with harness.session_factory() as session:
        with actor_context("alice"):
            session.add(harness.person(name="Ada"))
            with pytest.raises(RequiredMetaDataMissingError):
                await session.commit()
            await session.rollback()

    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_compression_stores_only_modified_fields(make_trail):
    harness = await make_trail(enable_compression=True)
    person = await _create_person(harness, name="Ada", age=36)

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person.id)
            person.age = 37
            await session.commit()

    revisions = await harness.revisions()
    assert revisions[1].document == {"age": 37}


@pytest.mark.asyncio
async def test_text_documents(make_trail):
    harness = await make_trail(text_documents=True)
    await _create_person(harness, name="Ada")

    revision = (await harness.revisions())[0]
    assert isinstance(revision.document, str)
    assert json.loads(revision.document)["name"] == "Ada"


@pytest.mark.asyncio
async def test_camel_case_columns(make_trail):
    harness = await make_trail(underscored=False)
    table = harness.trail.tables.revision_table

    assert table.c.document_id.name == "documentId"
    assert table.c.user_id.name == "userId"
    assert table.c.created_at.name == "createdAt"

    person = await _create_person(harness, name="Ada")
    revision = (await harness.revisions())[0]
    assert revision.document_id == person.id
    assert revision.user_id == "alice"


@pytest.mark.asyncio
async def test_bulk_create(harness):
    people = [harness.person(name=name) for name in ("Ada", "Grace", "Edsger")]

    async with harness.session_factory() as session:
        with actor_context("alice"):
            await harness.trail.bulk_create(session, people)
            await session.commit()

    assert [person.revision for person in people] == [1, 1, 1]
    revisions = await harness.revisions()
    assert len(revisions) == 3
    assert {r.document_id for r in revisions} == {person.id for person in people}
    assert all(r.operation == "create" and r.revision == 1 for r in revisions)
    assert all(r.user_id == "alice" for r in revisions)


@pytest.mark.asyncio
async def test_bulk_create_opt_out(harness):
    async with harness.session_factory() as session:
        await harness.trail.bulk_create(
            session,
            [harness.person(name="Ada")],
            MutationOptions(no_paper_trail=True),
        )
        await session.commit()

    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_failed_bulk_create_restores_per_row_capture(harness):
    person = harness.person(name=None)

    async with harness.session_factory() as session:
        with actor_context("alice"):
            with pytest.raises(IntegrityError):
                await harness.trail.bulk_create(session, [person])
            await session.rollback()

    person.name = "Ada"
    async with harness.session_factory() as session:
        with actor_context("alice"):
            session.add(person)
            await session.commit()

    revisions = await harness.revisions()
    assert [(r.operation, r.revision) for r in revisions] == [("create", 1)]
    assert revisions[0].document_id == person.id


@pytest.mark.asyncio
async def test_bulk_create_unregistered_model(harness):
    class Untracked:
        pass

    async with harness.session_factory() as session:
        with pytest.raises(ModelNotRegistered):
            await harness.trail.bulk_create(session, [Untracked()])


@pytest.mark.asyncio
async def test_unregister_stops_capture(harness):
    harness.trail.unregister(harness.person)

    await _create_person(harness, name="Ada")

    assert not harness.trail.is_registered(harness.person)
    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_concurrent_sessions_keep_their_actor(harness):
    async def create(actor: str):
        async with harness.session_factory() as session:
            with actor_context(actor):
                await asyncio.sleep(0)
                session.add(harness.person(name=actor))
                await session.commit()

    await asyncio.gather(*(create(f"user-{i}") for i in range(4)))

    revisions = await harness.revisions()
    assert {(r.document["name"], r.user_id) for r in revisions} == {
        (f"user-{i}", f"user-{i}") for i in range(4)
    }


@pytest.mark.asyncio
async def test_get_session_commits_revisions_with_the_mutation(harness):
    with actor_context("alice"):
        async with get_session(harness.session_factory) as session:
            session.add(harness.person(name="Ada"))

    assert len(await harness.revisions()) == 1


@pytest.mark.asyncio
async def test_get_session_rolls_back_revisions_on_error(harness):
    with pytest.raises(RuntimeError):
        with actor_context("alice"):
            async with get_session(harness.session_factory) as session:
                session.add(harness.person(name="Ada"))
                await session.flush()
                raise RuntimeError("handler failed")

    assert await harness.revisions() == []


@pytest.mark.asyncio
async def test_record_at_revision_zero(harness):
    """A row stamped 0 outside the engine moves to 1 on its first real change."""
    async with harness.session_factory() as session:
        result = await session.execute(
            insert(harness.person.__table__).values(name="a", age=1, revision=0)
        )
        person_id = result.inserted_primary_key[0]
        await session.commit()

    async with harness.session_factory() as session:
        with actor_context("alice"):
            person = await session.get(harness.person, person_id)
            person.name = "a"
            await session.commit()
            assert person.revision == 0
            assert await harness.revisions() == []

            person.name = "b"
            await session.commit()

    assert person.revision == 1
    revisions = await harness.revisions()
    assert len(revisions) == 1
    assert revisions[0].revision == 1
    assert revisions[0].document == {"name": "b", "age": 1, "email": None}
