import pytest  # noqa
import gerry
import gerry.push
import gerry.refmap

from gerry.command import setup_parser


@pytest.mark.parametrize('target,topic,draft,expected', [
    ('master', 'fixes', False, 'refs/for/master/fixes'),
    ('master', 'fixes', True, 'refs/drafts/master/fixes'),
    ('stable/1.0', '', False, 'refs/for/stable/1.0'),
    ('master', None, True, 'refs/drafts/master'),
])
def test_build_push_ref(target, topic, draft, expected):
    assert gerry.push.build_push_ref(target, topic, draft) == expected


def test_push_options():
    pplan = gerry.push.PushPlan('origin', 'feature', 'master', topic='feature', reviewers=['alice', 'bob'],
                                hashtags=['urgent'], comment='Fixed, 100% this time')
    assert pplan.push_options == ['r=alice', 'r=bob', 'hashtag=urgent', 'm=Fixed%2C%20100%25%20this%20time']
    assert pplan.git_args() == ['push', '-o', 'r=alice', '-o', 'r=bob', '-o', 'hashtag=urgent',
                                '-o', 'm=Fixed%2C%20100%25%20this%20time',
                                'origin', 'feature:refs/for/master/feature']


def test_plan_defaults(ctx, gitdir, git):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    pplan = gerry.push.plan(ctx, 'feature')
    assert pplan.remote == 'origin'
    assert pplan.target == 'master'
    assert pplan.dest_ref == 'refs/for/master/feature'
    assert not pplan.requires_confirmation

    pplan = gerry.push.plan(ctx, 'feature', target='stable', topic='other', draft=True)
    assert pplan.dest_ref == 'refs/drafts/stable/other'
    pplan = gerry.push.plan(ctx, 'feature', notopic=True)
    assert pplan.dest_ref == 'refs/for/master'


def test_plan_no_upstream(ctx, gitdir, git):
    git(gitdir, ['checkout', '-b', 'loose'])
    with pytest.raises(gerry.NoUpstreamError):
        gerry.push.plan(ctx, 'loose')
    # An explicit target is enough
    assert gerry.push.plan(ctx, 'loose', target='master').dest_ref == 'refs/for/master/loose'


def test_plan_expands_squads(ctx, gitdir, git):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    ctx.squads.set('core', ['alice', 'bob'])
    pplan = gerry.push.plan(ctx, 'feature', reviewers=['bob', '@core', 'carol'])
    assert pplan.reviewers == ['bob', 'alice', 'carol']
    with pytest.raises(gerry.NotFoundError):
        gerry.push.plan(ctx, 'feature', reviewers=['@nobody'])


def test_draft_guard(ctx, gitdir, git):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    gerry.refmap.record_tracking(ctx, 'feature', draft=True)
    pplan = gerry.push.plan(ctx, 'feature')
    assert pplan.requires_confirmation
    # Pushing drafts again is fine
    assert not gerry.push.plan(ctx, 'feature', draft=True).requires_confirmation
    with pytest.raises(gerry.UsageError):
        gerry.push.confirm_plan(ctx, pplan)
    gerry.push.confirm_plan(ctx, pplan, assume_yes=True)


def test_draft_guard_from_server(ctx, fakeserver, gitdir, git, commit, changeid, mkchange, tmp_path):
    # Marked work-in-progress on the server, never drafted from this clone
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('New feature', change_id=changeid('feature'))
    fakeserver.changes = [mkchange(5, change_id=changeid('feature'), wip=True)]
    assert 'gerry-draft' not in gerry.refmap.get_branch_tracking(ctx).get('feature', dict())
    with pytest.raises(gerry.UsageError):
        gerry.push.cmd_up(ctx, setup_parser().parse_args(['up']))
    ecode, out = gerry.git_run_command(str(tmp_path / 'remote.git'), ['rev-parse', '--verify', '--quiet',
                                                                       'refs/for/master/feature'])
    assert ecode > 0
    gerry.push.cmd_up(ctx, setup_parser().parse_args(['up', '--yes']))


def test_up_records_change_numbers(ctx, fakeserver, gitdir, git, commit, changeid, mkchange):
    import gerry.topic
    parser = setup_parser()
    gerry.topic.cmd_topic(ctx, parser.parse_args(['topic', 'feature']))
    commit('New feature', change_id=changeid('feature'))
    commit('Not on the server yet', change_id=changeid('later'))
    fakeserver.changes = [mkchange(77, change_id=changeid('feature'), topic='feature')]
    gerry.push.cmd_up(ctx, parser.parse_args(['up']))
    assert gerry.refmap.get_branch_tracking(ctx)['feature']['gerry-changes'] == '77'
    assert gerry.refmap.resolve_identifier_to_branch(ctx, '77') == 'feature'

    git(gitdir, ['checkout', 'master'])
    gerry.topic.cmd_checkout(ctx, parser.parse_args(['checkout', '77']))
    assert gerry.git_get_current_branch(gitdir) == 'feature'


def test_up_lookup_failure_is_partial(ctx, fakeserver, gitdir, git, commit, changeid, tmp_path):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    sha = commit('New feature', change_id=changeid('feature'))

    def broken(change_ids):
        raise gerry.ServerError('server went away')

    parser = setup_parser()
    pplan = gerry.push.plan_from_args(ctx, parser.parse_args(['up']), draft=False)
    gerry.push.execute_push(ctx, pplan)
    fakeserver.get_changes_by_ids = broken
    with pytest.raises(gerry.PartialFailureError) as exc:
        gerry.push.track_pushed_changes(ctx, 'feature')
    assert [x.ok for x in exc.value.results] == [True, False]
    remote = str(tmp_path / 'remote.git')
    assert git(remote, ['rev-parse', 'refs/for/master/feature']).strip() == sha


def test_execute_push(ctx, gitdir, git, commit, changeid, tmp_path):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    sha = commit('New feature', change_id=changeid('feature'))
    pplan = gerry.push.plan(ctx, 'feature', draft=True, reviewers=['alice'])
    gerry.push.execute_push(ctx, pplan)
    remote = str(tmp_path / 'remote.git')
    assert git(remote, ['rev-parse', 'refs/drafts/master/feature']).strip() == sha
    tracking = gerry.refmap.get_branch_tracking(ctx)['feature']
    assert tracking['gerry-draft'] == 'true'
    assert tracking['gerry-topic'] == 'feature'


def test_up_dry_run(ctx, gitdir, git, commit, changeid, tmp_path):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('New feature', change_id=changeid('feature'))
    cmdargs = setup_parser().parse_args(['up', '--dry-run', '-r', 'alice'])
    assert gerry.push.run_push(ctx, cmdargs, draft=False) is None
    ecode, out = gerry.git_run_command(str(tmp_path / 'remote.git'), ['rev-parse', '--verify', '--quiet',
                                                                       'refs/for/master/feature'])
    assert ecode > 0


def test_up_refuses_to_publish_drafts(ctx, gitdir, git, commit, changeid, tmp_path):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('New feature', change_id=changeid('feature'))
    gerry.push.cmd_draft(ctx, setup_parser().parse_args(['draft']))
    with pytest.raises(gerry.UsageError):
        gerry.push.cmd_up(ctx, setup_parser().parse_args(['up']))
    gerry.push.cmd_up(ctx, setup_parser().parse_args(['up', '--yes']))
    remote = str(tmp_path / 'remote.git')
    git(remote, ['rev-parse', 'refs/for/master/feature'])
    assert gerry.refmap.get_branch_tracking(ctx)['feature']['gerry-draft'] == 'false'


def test_ninja(ctx, fakeserver, gitdir, git, commit, changeid, mkchange):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    ids = [changeid('one'), changeid('two')]
    commit('One', change_id=ids[0])
    commit('Two', change_id=ids[1])
    fakeserver.changes = [mkchange(1, change_id=ids[0]), mkchange(2, change_id=ids[1])]
    gerry.push.cmd_ninja(ctx, setup_parser().parse_args(['ninja']))
    assert fakeserver.calls == [
        ('review', 1, None, {'Code-Review': 2}), ('submit', 1),
        ('review', 2, None, {'Code-Review': 2}), ('submit', 2),
    ]


def test_ninja_partial_failure(ctx, fakeserver, gitdir, git, commit, changeid, mkchange):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    ids = [changeid('one'), changeid('two')]
    commit('One', change_id=ids[0])
    commit('Two', change_id=ids[1])
    fakeserver.changes = [mkchange(1, change_id=ids[0]), mkchange(2, change_id=ids[1])]
    fakeserver.failing.add(1)
    with pytest.raises(gerry.PartialFailureError) as exc:
        gerry.push.cmd_ninja(ctx, setup_parser().parse_args(['ninja']))
    assert [x.ok for x in exc.value.results] == [False, True]
    # the second change is still submitted
    assert ('submit', 2) in fakeserver.calls


def test_ninja_bad_labels(ctx, fakeserver, gitdir, git, commit, changeid, tmp_path):
    git(gitdir, ['checkout', '--track', '-b', 'feature', 'origin/master'])
    commit('One', change_id=changeid('one'))
    ctx.config['ninja-labels'] = 'Code-Review=yes'
    with pytest.raises(gerry.UsageError):
        gerry.push.cmd_ninja(ctx, setup_parser().parse_args(['ninja']))
    ecode, out = gerry.git_run_command(str(tmp_path / 'remote.git'), ['rev-parse', '--verify', '--quiet',
                                                                       'refs/for/master/feature'])
    assert ecode > 0
