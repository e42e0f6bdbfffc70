#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import datetime
import sys

import gerry
import gerry.refmap

from typing import Optional, List, Set, Tuple
from gerry.identity import ChangeRef, parse_gerrit_timestamp

logger = gerry.logger

# token, record attribute, column header, description
FORMAT_TOKENS = [
    ('n', 'number', 'Number', 'change number'),
    ('s', 'subject', 'Subject', 'subject line'),
    ('o', 'owner', 'Owner', 'change owner'),
    ('b', 'branch', 'Branch', 'target branch'),
    ('t', 'topic', 'Topic', 'topic label'),
    ('p', 'project', 'Project', 'project name'),
    ('a', 'age', 'Age', 'time since last update'),
    ('c', 'change_id', 'Change-Id', 'Change-Id'),
    ('P', 'patchset', 'PS', 'current patch set'),
    ('S', 'status', 'Status', 'change status'),
    ('r', 'reviewers', 'Reviewers', 'reviewers, comma-separated'),
    ('d', 'draft', 'Draft', '"D" for drafts and work in progress'),
    ('*', 'starred', 'Star', '"*" for starred changes'),
]
TOKEN_MAP = {x[0]: x for x in FORMAT_TOKENS}

LAYOUTS = ('table', 'vertical', 'oneline')
TABLE_COLUMNS = ['number', 'patchset', 'draft', 'starred', 'owner', 'branch', 'topic', 'age', 'subject']

VALUE_FIELDS = ('number', 'owner', 'reviewer', 'branch', 'topic', 'project', 'message')
BOOL_FIELDS = ('drafts', 'starred', 'watched', 'reviewed', 'assigned', 'mine')
FIELD_ALIASES = {
    'author': 'owner',
}
# Everything else takes at most one asserted value
MULTI_FIELDS = ('reviewer',)

SEARCH_OPERATORS = {
    'number': 'change:%s',
    'owner': 'owner:%s',
    'reviewer': 'reviewer:%s',
    'branch': 'branch:%s',
    'topic': 'topic:%s',
    'project': 'project:%s',
    'message': 'message:%s',
    'drafts': 'is:wip',
    'starred': 'is:starred',
    'watched': 'is:watched',
    'reviewed': 'is:reviewed',
    'assigned': 'reviewer:self',
    'mine': 'owner:self',
}


def get_account_name(account: Optional[dict]) -> str:
    if not account:
        return ''
    for key in ('username', 'email', 'name'):
        if account.get(key):
            return account[key]
    if '_account_id' in account:
        return str(account['_account_id'])
    return ''


def get_account_identities(account: Optional[dict]) -> Set[str]:
    """Every way a search operator can name this account, lowercased."""
    idents = set()
    if not account:
        return idents
    for key in ('username', 'email', 'name'):
        if account.get(key):
            idents.add(str(account[key]).lower())
    if '_account_id' in account:
        idents.add(str(account['_account_id']))
    return idents


class PatchRecord:
    number: Optional[int] = None
    owner: str = ''
    subject: str = ''
    branch: str = ''
    topic: str = ''
    project: str = ''
    updated: Optional[datetime.datetime] = None
    change_id: str = ''
    patchset: Optional[int] = None
    status: str = 'NEW'
    reviewers: List[str]
    owner_ids: Set[str]
    reviewer_ids: Set[str]
    starred: bool = False
    watched: bool = False
    draft: bool = False
    reviewed: bool = False
    assigned: bool = False
    mine: bool = False

    def __init__(self, number: Optional[int] = None, owner: str = '', subject: str = '', branch: str = '',
                 topic: str = '', project: str = '', updated: Optional[datetime.datetime] = None,
                 change_id: str = '', patchset: Optional[int] = None, status: str = 'NEW',
                 reviewers: Optional[List[str]] = None, starred: bool = False, watched: bool = False,
                 draft: bool = False, reviewed: bool = False, assigned: bool = False, mine: bool = False,
                 owner_ids: Optional[Set[str]] = None, reviewer_ids: Optional[Set[str]] = None):
        self.number = number
        self.owner = owner
        self.subject = subject
        self.branch = branch
        self.topic = topic
        self.project = project
        self.updated = updated
        self.change_id = change_id
        self.patchset = patchset
        self.status = status
        self.reviewers = reviewers if reviewers else list()
        self.starred = starred
        self.watched = watched
        self.draft = draft
        self.reviewed = reviewed
        self.assigned = assigned
        self.mine = mine
        if owner_ids is None:
            owner_ids = {owner.lower()} if owner else set()
        self.owner_ids = owner_ids
        if reviewer_ids is None:
            reviewer_ids = {x.lower() for x in self.reviewers}
        self.reviewer_ids = reviewer_ids

    @classmethod
    def from_json(cls, data: dict, me: Optional[dict] = None,
                  watched: Optional[Set[int]] = None) -> 'PatchRecord':
        change = ChangeRef.from_json(data)
        reviewers = list()
        reviewer_accounts = set()
        reviewer_ids = set()
        for account in data.get('reviewers', dict()).get('REVIEWER', list()):
            reviewer_accounts.add(account.get('_account_id'))
            reviewer_ids.update(get_account_identities(account))
            name = get_account_name(account)
            if name and name not in reviewers:
                reviewers.append(name)
        owner = data.get('owner', dict())
        mine = assigned = False
        if me:
            myid = me.get('_account_id')
            mine = owner.get('_account_id') == myid
            assigned = myid in reviewer_accounts
        return cls(number=change.number, owner=get_account_name(owner), subject=change.subject or '',
                   branch=change.branch or '', topic=change.topic or '', project=change.project or '',
                   updated=parse_gerrit_timestamp(data.get('updated')), change_id=change.change_id or '',
                   patchset=change.patchset, status=change.status, reviewers=reviewers,
                   starred=bool(data.get('starred')), watched=bool(watched and change.number in watched),
                   draft=change.draft, reviewed=bool(data.get('reviewed')), assigned=assigned, mine=mine,
                   owner_ids=get_account_identities(owner), reviewer_ids=reviewer_ids)

    @classmethod
    def from_change(cls, change: ChangeRef) -> 'PatchRecord':
        if change.data:
            return cls.from_json(change.data)
        # Not on the server yet
        return cls(subject=change.subject or '', change_id=change.change_id, status=change.status,
                   branch=change.branch or '', topic=change.topic or '')

    def get_value(self, attr: str, now: Optional[datetime.datetime] = None) -> str:
        if attr == 'age':
            if self.updated is None:
                return ''
            if now is None:
                now = datetime.datetime.now(datetime.timezone.utc)
            return gerry.format_age(now - self.updated)
        if attr == 'reviewers':
            return ', '.join(self.reviewers)
        if attr == 'draft':
            return 'D' if self.draft else ''
        if attr == 'starred':
            return '*' if self.starred else ''
        value = getattr(self, attr)
        if value is None:
            return '-'
        return str(value)

    def __repr__(self):
        return '%s %s' % (self.number, self.subject)


class FilterSpec:
    """An AND of (field, value, negate) predicates, built up one flag at a time."""
    predicates: Set[Tuple[str, object, bool]]

    def __init__(self):
        self.predicates = set()

    def add(self, field: str, value=True, negate: bool = False) -> 'FilterSpec':
        field = FIELD_ALIASES.get(field, field)
        if field in BOOL_FIELDS:
            if value is not True:
                raise gerry.InvalidFilterError('--%s does not take a value' % field)
        elif field in VALUE_FIELDS:
            if value is True or value is None or str(value) == '':
                raise gerry.InvalidFilterError('--%s needs a value' % field)
            value = str(value)
            if field == 'number':
                if not value.isdigit():
                    raise gerry.InvalidFilterError('Not a change number: %s' % value)
                value = str(int(value))
        else:
            raise gerry.InvalidFilterError('Unknown filter field: %s' % field)

        if (field, value, not negate) in self.predicates:
            if field in BOOL_FIELDS:
                raise gerry.InvalidFilterError('--%s and --not-%s contradict each other' % (field, field))
            raise gerry.InvalidFilterError('--%s %s and --not-%s %s contradict each other'
                                           % (field, value, field, value))
        if not negate and field in VALUE_FIELDS and field not in MULTI_FIELDS:
            for pfield, pvalue, pnegate in self.predicates:
                if pfield == field and not pnegate and pvalue != value:
                    raise gerry.InvalidFilterError('--%s can only match one value, got %s and %s'
                                                   % (field, pvalue, value))
        self.predicates.add((field, value, negate))
        return self

    @property
    def fields(self) -> Set[str]:
        return {x[0] for x in self.predicates}

    @classmethod
    def from_args(cls, cmdargs: argparse.Namespace) -> 'FilterSpec':
        fspec = cls()
        for field in VALUE_FIELDS + tuple(FIELD_ALIASES):
            for value in getattr(cmdargs, field, None) or list():
                fspec.add(field, value)
            for value in getattr(cmdargs, f'not_{field}', None) or list():
                fspec.add(field, value, negate=True)
        for field in BOOL_FIELDS:
            if getattr(cmdargs, field, False):
                fspec.add(field)
            if getattr(cmdargs, f'not_{field}', False):
                fspec.add(field, negate=True)
        return fspec

    @staticmethod
    def _test(record: PatchRecord, field: str, value) -> bool:
        if field == 'number':
            return str(record.number) == value
        if field == 'owner':
            return value.lower() in record.owner_ids
        if field == 'reviewer':
            return value.lower() in record.reviewer_ids
        if field == 'message':
            return value.lower() in record.subject.lower()
        if field == 'drafts':
            return record.draft
        if field in BOOL_FIELDS:
            return bool(getattr(record, field))
        return getattr(record, field) == value

    def matches(self, record: PatchRecord) -> bool:
        for field, value, negate in self.predicates:
            if self._test(record, field, value) == negate:
                return False
        return True

    def to_query(self) -> str:
        terms = list()
        for field, value, negate in sorted(self.predicates, key=lambda x: (x[0], str(x[1]), x[2])):
            operator = SEARCH_OPERATORS[field]
            if field in VALUE_FIELDS:
                if ' ' in value or '"' in value:
                    value = '"%s"' % value.replace('"', '')
                operator = operator % value
            if negate:
                operator = '-' + operator
            terms.append(operator)
        return ' '.join(terms)

    def __eq__(self, other):
        return isinstance(other, FilterSpec) and self.predicates == other.predicates

    def __repr__(self):
        return 'FilterSpec(%s)' % self.to_query()


def parse_format(fmt: str) -> List[Tuple[bool, str]]:
    """Split a format string into (is_token, literal-or-attribute) parts."""
    parts = list()
    literal = ''
    pos = 0
    while pos < len(fmt):
        char = fmt[pos]
        if char != '%':
            literal += char
            pos += 1
            continue
        if pos + 1 >= len(fmt):
            raise gerry.InvalidFormatError('Format string ends with a lone %')
        token = fmt[pos + 1]
        pos += 2
        if token == '%':
            literal += '%'
            continue
        if token not in TOKEN_MAP:
            raise gerry.InvalidFormatError('Unknown format token: %%%s' % token)
        if literal:
            parts.append((False, literal))
            literal = ''
        parts.append((True, TOKEN_MAP[token][1]))
    if literal:
        parts.append((False, literal))
    return parts


def get_format_help() -> str:
    helps = ['%%%s: %s' % (x[0], x[3]) for x in FORMAT_TOKENS]
    return 'Format tokens (%% for a literal %): ' + ', '.join(helps)


class FormatSpec:
    layout: str = 'table'
    fmt: Optional[str] = None

    def __init__(self, layout: str = 'table', fmt: Optional[str] = None):
        if layout not in LAYOUTS:
            raise gerry.InvalidFormatError('Unknown layout: %s' % layout)
        self.layout = layout
        self.fmt = fmt
        self.parts = list()
        if layout == 'oneline':
            if not fmt:
                raise gerry.InvalidFormatError('The oneline layout needs a format string')
            self.parts = parse_format(fmt)

    @classmethod
    def from_args(cls, ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> 'FormatSpec':
        if cmdargs.format:
            return cls('oneline', cmdargs.format)
        layout = cmdargs.layout or 'table'
        if layout == 'oneline':
            return cls(layout, ctx.config.get('patches-format', '%n  %s'))
        return cls(layout)


def query(records: List[PatchRecord], fspec: FilterSpec) -> List[PatchRecord]:
    return [x for x in records if fspec.matches(x)]


def _render_table(records: List[PatchRecord], now: Optional[datetime.datetime]) -> List[str]:
    headers = {x[1]: x[2] for x in FORMAT_TOKENS}
    rows = [[headers[x] for x in TABLE_COLUMNS]]
    for record in records:
        rows.append([record.get_value(x, now) for x in TABLE_COLUMNS])
    widths = [max(len(row[col]) for row in rows) for col in range(len(TABLE_COLUMNS))]
    lines = list()
    for row in rows:
        cells = [row[col].ljust(widths[col]) for col in range(len(row) - 1)]
        cells.append(row[-1])
        lines.append('  '.join(cells).rstrip())
    return lines


def _render_vertical(records: List[PatchRecord], now: Optional[datetime.datetime]) -> List[str]:
    width = max(len(x[2]) for x in FORMAT_TOKENS)
    lines = list()
    for record in records:
        if lines:
            lines.append('')
        for token, attr, header, desc in FORMAT_TOKENS:
            lines.append('%s: %s' % (header.rjust(width), record.get_value(attr, now)))
    return lines


def render(records: List[PatchRecord], fmtspec: FormatSpec, now: Optional[datetime.datetime] = None) -> str:
    if fmtspec.layout == 'table':
        if not records:
            return ''
        lines = _render_table(records, now)
    elif fmtspec.layout == 'vertical':
        lines = _render_vertical(records, now)
    else:
        lines = list()
        for record in records:
            chunks = list()
            for is_token, value in fmtspec.parts:
                if is_token:
                    chunks.append(record.get_value(value, now))
                else:
                    chunks.append(value)
            lines.append(''.join(chunks))
    return '\n'.join(lines)


def fetch_records(ctx: gerry.ExecContext, fspec: FilterSpec) -> List[PatchRecord]:
    server = ctx.server
    wanted = fspec.fields
    me = None
    if wanted & {'mine', 'assigned'}:
        me = server.get_self()
    srvquery = ('status:open %s' % fspec.to_query()).strip()
    queries = [srvquery]
    if 'watched' in wanted:
        queries.append('is:watched status:open')
    results = server.query_many(queries)
    watched = None
    if len(results) > 1:
        watched = {x['_number'] for x in results[1]}
    records = [PatchRecord.from_json(x, me=me, watched=watched) for x in results[0]]
    # The server did most of the narrowing, but not every gerrit version
    # understands every operator
    return query(records, fspec)


def write_output(output: str) -> None:
    if output:
        sys.stdout.write(output + '\n')
        sys.stdout.flush()


def cmd_patches(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    # Both of these raise on bad input before anything goes to the server
    fspec = FilterSpec.from_args(cmdargs)
    fmtspec = FormatSpec.from_args(ctx, cmdargs)
    records = fetch_records(ctx, fspec)
    if not records:
        logger.info('No matching changes.')
        return
    write_output(render(records, fmtspec))


def cmd_status(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    fmtspec = FormatSpec.from_args(ctx, cmdargs)
    branch = gerry.refmap.get_current_branch(ctx)
    changes = gerry.refmap.resolve_branch_to_changes(ctx, branch)
    if not changes:
        logger.info('Branch %s has no commits of its own.', branch)
        return
    records = [PatchRecord.from_change(x) for x in changes]
    logger.info('Branch %s: %s change(s)', branch, len(records))
    write_output(render(records, fmtspec))
