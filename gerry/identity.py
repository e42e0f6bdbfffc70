#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import datetime
import re

import gerry

from typing import Optional, List

logger = gerry.logger

CHANGEID_VALUE_RE = re.compile(r'^I[0-9a-f]{40}$')
GERRIT_TS_FORMAT = '%Y-%m-%d %H:%M:%S'

OPEN_STATUSES = {'NEW', 'DRAFT'}


def parse_gerrit_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    # Gerrit sends nanoseconds, which strptime can't handle
    try:
        return datetime.datetime.strptime(value[:19], GERRIT_TS_FORMAT).replace(tzinfo=datetime.timezone.utc)
    except ValueError:
        logger.debug('Unable to parse timestamp: %s', value)
        return None


class ChangeIdentity:
    """What the user typed to point at a change: a number, a Change-Id or a topic."""
    kind: str
    value: str
    patchset: Optional[int] = None

    def __init__(self, kind: str, value: str, patchset: Optional[int] = None):
        if kind not in ('number', 'changeid', 'topic'):
            raise ValueError('Unknown identity kind: %s' % kind)
        self.kind = kind
        self.value = value
        self.patchset = patchset

    @classmethod
    def parse(cls, ident: str, patchset: Optional[int] = None) -> 'ChangeIdentity':
        ident = ident.strip()
        if not ident:
            raise gerry.UsageError('Empty change identifier')
        # Accept 1234, 1234/5 and 1234,5 (the latter is what gerrit's ssh commands use)
        matches = re.search(r'^(\d+)(?:[/,](\d+))?$', ident)
        if matches:
            number, ps = matches.groups()
            if patchset is None and ps is not None:
                patchset = int(ps)
            return cls('number', str(int(number)), patchset)
        if CHANGEID_VALUE_RE.search(ident):
            return cls('changeid', ident, patchset)
        return cls('topic', ident, patchset)

    @property
    def number(self) -> Optional[int]:
        if self.kind == 'number':
            return int(self.value)
        return None

    def as_query(self) -> str:
        if self.kind == 'topic':
            return 'topic:"%s"' % self.value.replace('"', '')
        return 'change:%s' % self.value

    def __eq__(self, other):
        return (isinstance(other, ChangeIdentity) and self.kind == other.kind
                and self.value == other.value and self.patchset == other.patchset)

    def __hash__(self):
        return hash((self.kind, self.value, self.patchset))

    def __str__(self):
        if self.patchset is not None:
            return '%s/%s' % (self.value, self.patchset)
        return self.value

    def __repr__(self):
        return 'ChangeIdentity(%s=%s)' % (self.kind, str(self))


class ChangeRef:
    """One remote change, as the server sees it right now."""
    change_id: str
    number: Optional[int] = None
    patchset: Optional[int] = None
    draft: bool = False
    branch: Optional[str] = None
    topic: Optional[str] = None
    status: str = 'NEW'
    project: Optional[str] = None
    subject: Optional[str] = None
    revision: Optional[str] = None
    parents: List[str]
    updated: Optional[datetime.datetime] = None
    data: dict

    def __init__(self, change_id: str, number: Optional[int] = None, patchset: Optional[int] = None,
                 draft: bool = False, branch: Optional[str] = None, topic: Optional[str] = None,
                 status: str = 'NEW', project: Optional[str] = None, subject: Optional[str] = None,
                 revision: Optional[str] = None, parents: Optional[List[str]] = None,
                 updated: Optional[datetime.datetime] = None, data: Optional[dict] = None):
        self.change_id = change_id
        self.number = number
        self.patchset = patchset
        self.draft = draft
        self.branch = branch
        self.topic = topic
        self.status = status
        self.project = project
        self.subject = subject
        self.revision = revision
        self.parents = parents if parents else list()
        self.updated = updated
        self.data = data if data else dict()

    @classmethod
    def from_json(cls, data: dict) -> 'ChangeRef':
        revision = data.get('current_revision')
        patchset = None
        parents = list()
        if revision and revision in data.get('revisions', dict()):
            revdata = data['revisions'][revision]
            patchset = revdata.get('_number')
            for parent in revdata.get('commit', dict()).get('parents', list()):
                parents.append(parent.get('commit'))
        status = data.get('status', 'NEW')
        draft = bool(data.get('work_in_progress')) or status == 'DRAFT'
        return cls(change_id=data.get('change_id'), number=data.get('_number'), patchset=patchset,
                   draft=draft, branch=data.get('branch'), topic=data.get('topic'), status=status,
                   project=data.get('project'), subject=data.get('subject'), revision=revision,
                   parents=parents, updated=parse_gerrit_timestamp(data.get('updated')), data=data)

    @property
    def pushed(self) -> bool:
        return self.number is not None

    @property
    def is_open(self) -> bool:
        return self.pushed and self.status in OPEN_STATUSES

    def fetch_ref(self, patchset: Optional[int] = None) -> str:
        if not self.pushed:
            raise gerry.UsageError('Change %s has not been pushed yet' % self.change_id)
        if patchset is None:
            patchset = self.patchset
        if patchset is None:
            raise gerry.UsageError('No patch set known for change %s' % self.number)
        return 'refs/changes/%02d/%d/%d' % (self.number % 100, self.number, patchset)

    def __repr__(self):
        if self.pushed:
            return '%s (%s, ps%s, %s)' % (self.number, self.change_id[:9], self.patchset, self.status)
        return '%s (not pushed)' % self.change_id[:9]


class Commit:
    sha: str
    subject: str
    message: str
    timestamp: int
    change_id: Optional[str] = None

    def __init__(self, sha: str, message: str, timestamp: int = 0):
        self.sha = sha
        self.message = message
        self.subject = message.split('\n', 1)[0].strip()
        self.timestamp = timestamp
        self.change_id = self.get_change_id(message)

    @staticmethod
    def get_change_id(message: str) -> Optional[str]:
        # Trailers are at the bottom, so the last one wins
        matches = gerry.CHANGEID_RE.findall(message)
        if matches:
            return matches[-1]
        return None

    def __repr__(self):
        return '%.12s %s' % (self.sha, self.subject)


class TopicBranch:
    name: str
    upstream: Optional[str] = None
    commits: List[Commit]
    timestamp: int = 0
    gone: bool = False
    reason: Optional[str] = None

    def __init__(self, name: str, upstream: Optional[str] = None, timestamp: int = 0, gone: bool = False):
        self.name = name
        self.upstream = upstream
        self.timestamp = timestamp
        self.gone = gone
        self.commits = list()
        self.reason = None

    @property
    def change_ids(self) -> List[Optional[str]]:
        return [x.change_id for x in self.commits]

    def __repr__(self):
        if self.reason:
            return '%s (%s)' % (self.name, self.reason)
        return self.name
