import pytest
from sqlmodel import Session, select

from academicpro import models, repositories, services
from academicpro.database import engine
from academicpro.errors import BadInputError, ConflictError, ForbiddenError, StaleWriteError


def _user(session, first_name):
    return services.AuthService(session).register(
        first_name, 'Tester', f'{first_name.lower()}@example.com', 'secret123', 'secret123'
    )


@pytest.fixture
def people(session):
    return {name: _user(session, name) for name in ('admin', 'bob', 'carol')}


def _admin_is_member(session, group_id):
    group = session.get(models.Group, group_id)
    return group.admin_id in repositories.GroupRepository(session).member_ids(group_id)


def test_admin_stays_a_member_through_every_operation(session, people):
    svc = services.GroupService(session)
    admin, bob, carol = people['admin'], people['bob'], people['carol']
    gid = svc.create(admin, 'Steady', 'demo')['id']
    assert _admin_is_member(session, gid)

    steps = [
        lambda: svc.add_member(admin, gid, bob.id),
        lambda: svc.add_member(admin, gid, carol.id),
        lambda: svc.add_discussion(bob, gid, 'hi'),
        lambda: svc.update_status(admin, gid, models.Status.DONE),
        lambda: svc.update_details(admin, gid, {'assignment_title': 'Essay'}),
        lambda: svc.remove_member(admin, gid, bob.id),
        lambda: svc.remove_member(admin, gid, admin.id),
        lambda: svc.remove_member(carol, gid, admin.id),
        lambda: svc.add_member(admin, gid, admin.id),
    ]
    for step in steps:
        try:
            step()
        except (BadInputError, ConflictError, ForbiddenError):
            pass
        assert _admin_is_member(session, gid)

    assert repositories.GroupRepository(session).member_ids(gid) == [admin.id, carol.id]


def test_unique_constraint_rejects_duplicate_insert(session, people):
    svc = services.GroupService(session)
    gid = svc.create(people['admin'], 'Race', None)['id']
    repo = repositories.GroupRepository(session)
    repo.add_member(gid, people['bob'].id)
    # bypasses the service-level scan, as a concurrent request would
    with pytest.raises(ConflictError):
        repo.add_member(gid, people['bob'].id)
    assert repo.member_ids(gid) == [people['admin'].id, people['bob'].id]


def test_conditional_update_detects_concurrent_write(session, people):
    svc = services.GroupService(session)
    gid = svc.create(people['admin'], 'Versioned', None)['id']

    with Session(engine) as other:
        stale = services.GroupService(other)
        # both requests read version 1; the first write wins
        assert repositories.GroupRepository(session).update_fields(gid, 1, {'assignment_title': 'first'})
        with pytest.raises(StaleWriteError):
            stale.update_details(people['admin'], gid, {'assignment_title': 'second', 'version': 1})

    session.expire_all()
    group = session.get(models.Group, gid)
    assert group.assignment_title == 'first'
    assert group.version == 2


def test_delete_removes_members_and_discussions(session, people):
    svc = services.GroupService(session)
    admin, bob = people['admin'], people['bob']
    gid = svc.create(admin, 'Doomed', None)['id']
    svc.add_member(admin, gid, bob.id)
    svc.add_discussion(bob, gid, 'bye')

    svc.delete(admin, gid)

    assert session.get(models.Group, gid) is None
    assert session.exec(select(models.GroupMember).where(models.GroupMember.group_id == gid)).all() == []
    assert session.exec(select(models.Discussion).where(models.Discussion.group_id == gid)).all() == []


def test_non_member_post_leaves_log_unchanged(session, people):
    svc = services.GroupService(session)
    gid = svc.create(people['admin'], 'Quiet', None)['id']
    with pytest.raises(ForbiddenError):
        svc.add_discussion(people['carol'], gid, 'let me in')
    assert repositories.GroupRepository(session).list_discussions(gid) == []
