import pytest  # noqa
import gerry
import hashlib
import os

from gerry.identity import ChangeIdentity, ChangeRef


@pytest.fixture(scope="function", autouse=True)
def settestdefaults(tmp_path):
    gerry.MAIN_CONFIG = dict(gerry.DEFAULT_CONFIG)
    gerry.REQSESSION = None
    os.environ['XDG_DATA_HOME'] = str(tmp_path / 'data')
    os.environ['XDG_CACHE_HOME'] = str(tmp_path / 'cache')


def _git(gitdir, args):
    ecode, out = gerry.git_run_command(gitdir, args, logstderr=True)
    assert ecode == 0, out
    return out


@pytest.fixture(scope="function")
def gitdir(tmp_path):
    remote = os.path.join(tmp_path, 'remote.git')
    _git(None, ['init', '--bare', remote])
    _git(remote, ['config', 'receive.advertisePushOptions', 'true'])
    dest = os.path.join(tmp_path, 'repo')
    _git(None, ['init', dest])
    olddir = os.getcwd()
    os.chdir(dest)
    _git(dest, ['symbolic-ref', 'HEAD', 'refs/heads/master'])
    _git(dest, ['config', 'user.name', 'Test User'])
    _git(dest, ['config', 'user.email', 'test@example.com'])
    _git(dest, ['config', 'commit.gpgsign', 'false'])
    _git(dest, ['remote', 'add', 'origin', remote])
    with open(os.path.join(dest, 'README'), 'w') as fh:
        fh.write('Initial\n')
    _git(dest, ['add', 'README'])
    _git(dest, ['commit', '-m', 'Initial commit'])
    _git(dest, ['push', '-u', 'origin', 'master'])
    yield dest
    os.chdir(olddir)


ACCOUNT_IDS = {
    'jsmith': 1000,
    'alice': 1001,
    'bob': 1002,
    'carol': 1003,
}

FULL_NAMES = {
    'jsmith': 'John Smith',
    'alice': 'Alice Liddell',
    'bob': 'Bob Dobbs',
    'carol': 'Carol Shaw',
}


def make_account(username):
    return {'_account_id': ACCOUNT_IDS.get(username, 1999), 'username': username,
            'email': '%s@example.com' % username, 'name': FULL_NAMES.get(username, username.title())}


def make_change_id(seed: str) -> str:
    return 'I' + hashlib.sha1(seed.encode()).hexdigest()


@pytest.fixture
def changeid():
    return make_change_id


@pytest.fixture
def commit(gitdir):
    """Returns a function that makes a commit on the current branch and returns its sha."""
    def _commit(subject, change_id=None, filename=None):
        if filename is None:
            filename = subject.replace(' ', '_') + '.txt'
        with open(os.path.join(gitdir, filename), 'a') as fh:
            fh.write(subject + '\n')
        _git(gitdir, ['add', filename])
        message = subject + '\n\nSome description.\n'
        if change_id:
            message += '\nChange-Id: %s\n' % change_id
        _git(gitdir, ['commit', '-m', message])
        return _git(gitdir, ['rev-parse', 'HEAD']).strip()
    return _commit


@pytest.fixture
def git():
    return _git


def make_change(number, change_id=None, subject='A change', owner='jsmith', branch='master', topic=None,
                status='NEW', wip=False, revision=None, parents=None, patchset=1,
                updated='2026-10-01 12:00:00.000000000', reviewers=None, starred=False, reviewed=False):
    if change_id is None:
        change_id = make_change_id(str(number))
    if revision is None:
        revision = hashlib.sha1(('rev%s' % number).encode()).hexdigest()
    data = {
        '_number': number,
        'change_id': change_id,
        'subject': subject,
        'owner': make_account(owner),
        'branch': branch,
        'project': 'demo',
        'status': status,
        'updated': updated,
        'current_revision': revision,
        'revisions': {
            revision: {
                '_number': patchset,
                'commit': {'parents': [{'commit': x} for x in (parents or list())]},
            },
        },
        'reviewers': {'REVIEWER': [make_account(x) for x in (reviewers or list())]},
    }
    if topic:
        data['topic'] = topic
    if wip:
        data['work_in_progress'] = True
    if starred:
        data['starred'] = True
    if reviewed:
        data['reviewed'] = True
    return data


class FakeServer:
    """Stands in for GerritServer, keeping everything in memory."""

    def __init__(self, changes=None):
        self.changes = changes if changes else list()
        self.watched = set()
        self.me = {'_account_id': 1000, 'username': 'jsmith'}
        self.failing = set()
        self.queries = list()
        self.calls = list()
        self.hook = b'#!/bin/sh\necho hook\n'

    def query(self, query, limit=None, scoped=True):
        self.queries.append(query)
        if query.startswith('is:watched'):
            return [x for x in self.changes if x['_number'] in self.watched]
        return list(self.changes)

    def query_many(self, queries, scoped=True):
        return [self.query(x) for x in queries]

    def get_changes(self, ident: ChangeIdentity, only_open=False):
        self.queries.append(ident.as_query())
        found = list()
        for data in self.changes:
            if ident.kind == 'number' and data['_number'] != ident.number:
                continue
            if ident.kind == 'changeid' and data['change_id'] != ident.value:
                continue
            if ident.kind == 'topic' and data.get('topic') != ident.value:
                continue
            change = ChangeRef.from_json(data)
            if only_open and not change.is_open:
                continue
            found.append(change)
        return found

    def get_changes_by_ids(self, change_ids):
        found = dict()
        for change_id in change_ids:
            found[change_id] = self.get_changes(ChangeIdentity('changeid', change_id))
        return found

    def get_self(self):
        self.calls.append(('self',))
        return self.me

    def _act(self, what, change, *args):
        self.calls.append((what, change.number) + args)
        if change.number in self.failing:
            raise gerry.ServerError('%s of %s failed' % (what, change.number))

    def review(self, change, message=None, labels=None):
        self._act('review', change, message, labels)

    def submit(self, change):
        self._act('submit', change)

    def abandon(self, change, message=None):
        self._act('abandon', change, message)

    def add_reviewer(self, change, reviewer):
        self._act('add_reviewer', change, reviewer)

    def get_hook(self, name='commit-msg'):
        return self.hook


@pytest.fixture
def mkchange():
    return make_change


@pytest.fixture
def fakeserver():
    return FakeServer()


@pytest.fixture
def ctx(fakeserver):
    return gerry.ExecContext(config=dict(gerry.DEFAULT_CONFIG), server=fakeserver, interactive=False)
