import pytest  # noqa
import gerry
import gerry.review
import os

from gerry.command import setup_parser


@pytest.fixture
def branch_with_changes(ctx, fakeserver, gitdir, git, commit, changeid, mkchange):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('One', change_id=changeid('one'))
    commit('Two', change_id=changeid('two'))
    commit('Three', change_id=changeid('three'))
    fakeserver.changes = [
        mkchange(11, change_id=changeid('one'), subject='One'),
        mkchange(12, change_id=changeid('two'), subject='Two'),
    ]
    return 'feature'


def test_get_targets_from_branch(ctx, branch_with_changes):
    # The third commit was never pushed
    assert [x.number for x in gerry.review.get_targets(ctx)] == [11, 12]


def test_get_targets_explicit(ctx, fakeserver, mkchange, changeid):
    fakeserver.changes = [
        mkchange(20, change_id=changeid('x'), status='MERGED', branch='stable'),
        mkchange(21, change_id=changeid('x')),
        mkchange(22, topic='frob'),
        mkchange(23, topic='frob'),
        mkchange(24, topic='frob', status='ABANDONED'),
    ]
    assert [x.number for x in gerry.review.get_targets(ctx, '20')] == [20]
    assert [x.number for x in gerry.review.get_targets(ctx, changeid('x'))] == [21]
    assert [x.number for x in gerry.review.get_targets(ctx, 'frob')] == [22, 23]
    with pytest.raises(gerry.NotFoundError):
        gerry.review.get_targets(ctx, '99')


def test_get_targets_nothing_pushed(ctx, gitdir, git, commit, changeid):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('Local only', change_id=changeid('local'))
    with pytest.raises(gerry.NotFoundError):
        gerry.review.get_targets(ctx)


def test_review(ctx, fakeserver, branch_with_changes):
    parser = setup_parser()
    gerry.review.cmd_review(ctx, parser.parse_args(['review', '-2', 'Needs work', '--verified', '-1']))
    assert fakeserver.calls == [
        ('review', 11, 'Needs work', {'Code-Review': -2, 'Verified': -1}),
        ('review', 12, 'Needs work', {'Code-Review': -2, 'Verified': -1}),
    ]


@pytest.mark.parametrize('args', [
    ['review', '3'],
    ['review', '+1', '--verified', '2'],
])
def test_review_bad_scores(ctx, fakeserver, args):
    with pytest.raises(gerry.UsageError):
        gerry.review.cmd_review(ctx, setup_parser().parse_args(args + ['-t', '11']))
    assert fakeserver.calls == list()


def test_partial_failure(ctx, fakeserver, branch_with_changes):
    fakeserver.failing.add(11)
    with pytest.raises(gerry.PartialFailureError) as exc:
        gerry.review.cmd_submit(ctx, setup_parser().parse_args(['submit']))
    assert [(x.item, x.ok) for x in exc.value.results] == [('11 One', False), ('12 Two', True)]
    # No retries
    assert fakeserver.calls == [('submit', 11), ('submit', 12)]


def test_abandon_and_comment(ctx, fakeserver, mkchange):
    fakeserver.changes = [mkchange(30)]
    parser = setup_parser()
    gerry.review.cmd_abandon(ctx, parser.parse_args(['abandon', '-m', 'Superseded', '-t', '30']))
    gerry.review.cmd_comment(ctx, parser.parse_args(['comment', 'Ping?', '-t', '30']))
    assert fakeserver.calls == [('abandon', 30, 'Superseded'), ('review', 30, 'Ping?', None)]
    with pytest.raises(gerry.UsageError):
        gerry.review.cmd_comment(ctx, parser.parse_args(['comment', '  ', '-t', '30']))


def test_assign(ctx, fakeserver, mkchange):
    fakeserver.changes = [mkchange(40)]
    ctx.squads.set('core', ['alice', 'bob'])
    gerry.review.cmd_assign(ctx, setup_parser().parse_args(['assign', '@core', 'carol', '-t', '40']))
    assert fakeserver.calls == [('add_reviewer', 40, 'alice'), ('add_reviewer', 40, 'bob'),
                                ('add_reviewer', 40, 'carol')]


def test_install_hook(ctx, fakeserver, gitdir):
    parser = setup_parser()
    gerry.review.cmd_install_hook(ctx, parser.parse_args(['install-hook']))
    hookpath = os.path.join(gitdir, '.git', 'hooks', 'commit-msg')
    with open(hookpath, 'rb') as fh:
        assert fh.read() == fakeserver.hook
    assert os.access(hookpath, os.X_OK)
    with pytest.raises(gerry.UsageError):
        gerry.review.cmd_install_hook(ctx, parser.parse_args(['install-hook']))
    fakeserver.hook = b'#!/bin/sh\necho new\n'
    gerry.review.cmd_install_hook(ctx, parser.parse_args(['install-hook', '--force']))
    with open(hookpath, 'rb') as fh:
        assert fh.read() == fakeserver.hook
