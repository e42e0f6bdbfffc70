import pytest  # noqa
import gerry
import gerry.refmap

from gerry.identity import ChangeIdentity, ChangeRef, Commit


def make_topic(git, gitdir, name, upstream='origin/master'):
    git(gitdir, ['checkout', '--track', '-b', name, upstream])


def test_get_upstream(ctx, gitdir, git):
    assert gerry.refmap.get_upstream(ctx, 'master') == ('origin', 'master', 'origin/master')
    git(gitdir, ['branch', 'loose'])
    assert gerry.refmap.get_upstream(ctx, 'loose') is None
    git(gitdir, ['branch', '--track', 'local-based', 'master'])
    assert gerry.refmap.get_upstream(ctx, 'local-based') == ('origin', 'master', 'master')


def test_resolve_branch_to_changes(ctx, fakeserver, gitdir, git, commit, changeid, mkchange):
    make_topic(git, gitdir, 'feature')
    ids = [changeid('one'), changeid('two'), changeid('three')]
    for i, change_id in enumerate(ids):
        commit('Commit %s' % i, change_id=change_id)
    fakeserver.changes = [
        mkchange(101, change_id=ids[0], status='MERGED', updated='2026-01-01 00:00:00.000000000'),
        mkchange(102, change_id=ids[0], updated='2025-01-01 00:00:00.000000000'),
        mkchange(103, change_id=ids[1], status='ABANDONED', updated='2026-01-01 00:00:00.000000000'),
        mkchange(104, change_id=ids[1], status='MERGED', updated='2026-02-01 00:00:00.000000000'),
    ]
    changes = gerry.refmap.resolve_branch_to_changes(ctx, 'feature')
    # one per commit, oldest first
    assert [x.change_id for x in changes] == ids
    # the open one wins over a newer merged one
    assert changes[0].number == 102
    # nothing open, so the latest
    assert changes[1].number == 104
    # unknown to the server
    assert not changes[2].pushed
    assert changes[2].subject == 'Commit 2'


def test_resolve_branch_without_commits(ctx, fakeserver, gitdir, git):
    make_topic(git, gitdir, 'empty')
    assert gerry.refmap.resolve_branch_to_changes(ctx, 'empty') == list()
    assert fakeserver.queries == list()


def test_resolve_branch_missing_changeid(ctx, fakeserver, gitdir, git, commit, changeid):
    make_topic(git, gitdir, 'feature')
    commit('Good one', change_id=changeid('good'))
    commit('Bad one')
    with pytest.raises(gerry.MissingChangeIdError):
        gerry.refmap.resolve_branch_to_changes(ctx, 'feature')
    assert fakeserver.queries == list()


def test_resolve_branch_no_upstream(ctx, gitdir, git):
    git(gitdir, ['checkout', '-b', 'loose'])
    with pytest.raises(gerry.NoUpstreamError):
        gerry.refmap.resolve_branch_to_changes(ctx, 'loose')


def test_pick_change_ambiguous(changeid):
    change_id = changeid('dup')
    commit = Commit('a' * 40, 'Dup\n\nChange-Id: %s\n' % change_id)
    found = [ChangeRef(change_id, number=1, branch='master'), ChangeRef(change_id, number=2, branch='stable')]
    with pytest.raises(gerry.AmbiguousTopicError):
        gerry.refmap.pick_change(commit, found)
    # Only one of them is open, so no ambiguity
    found[1].status = 'ABANDONED'
    assert gerry.refmap.pick_change(commit, found).number == 1


def test_tracking(ctx, gitdir, git):
    make_topic(git, gitdir, 'feature.one')
    gerry.refmap.record_tracking(ctx, 'feature.one', topic='fixes', changes=[10, 11], draft=True)
    gerry.refmap.record_tracking(ctx, 'master', topic='')
    tracking = gerry.refmap.get_branch_tracking(ctx)
    assert tracking['feature.one'] == {'gerry-topic': 'fixes', 'gerry-changes': '10,11', 'gerry-draft': 'true'}
    assert tracking['master'] == {'gerry-topic': ''}


def test_resolve_identifier_to_branch(ctx, gitdir, git, commit, changeid):
    make_topic(git, gitdir, 'feature')
    commit('Something', change_id=changeid('something'))
    gerry.refmap.record_tracking(ctx, 'feature', topic='fixes', changes=[10, 11])
    assert gerry.refmap.resolve_identifier_to_branch(ctx, '11') == 'feature'
    assert gerry.refmap.resolve_identifier_to_branch(ctx, 'fixes') == 'feature'
    assert gerry.refmap.resolve_identifier_to_branch(ctx, 'feature') == 'feature'
    assert gerry.refmap.resolve_identifier_to_branch(ctx, changeid('something')) == 'feature'
    with pytest.raises(gerry.NotFoundError):
        gerry.refmap.resolve_identifier_to_branch(ctx, '12')
    with pytest.raises(gerry.NotFoundError):
        gerry.refmap.resolve_identifier_to_branch(ctx, ChangeIdentity('topic', 'other'))


def test_resolve_identifier_ambiguous(ctx, gitdir, git):
    make_topic(git, gitdir, 'one')
    make_topic(git, gitdir, 'two')
    gerry.refmap.record_tracking(ctx, 'one', topic='shared')
    gerry.refmap.record_tracking(ctx, 'two', topic='shared')
    with pytest.raises(gerry.AmbiguousTopicError):
        gerry.refmap.resolve_identifier_to_branch(ctx, 'shared')


def test_current_branch(ctx, gitdir, git):
    assert gerry.refmap.get_current_branch(ctx) == 'master'
    git(gitdir, ['checkout', '--detach'])
    with pytest.raises(gerry.UsageError):
        gerry.refmap.get_current_branch(ctx)
