#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import re

import gerry

from typing import Optional, Tuple, List, Dict, Union
from gerry.identity import ChangeIdentity, ChangeRef, Commit, TopicBranch

logger = gerry.logger

TRACKING_PREFIX = 'gerry-'


def get_upstream(ctx: gerry.ExecContext, branch: str) -> Optional[Tuple[str, str, str]]:
    """Return (remote, target branch, upstream ref) for a local branch, or None."""
    regexp = r'^branch\.%s\.(remote|merge)$' % gerry.regex_escape(branch)
    bcfg = gerry.get_config_from_git(regexp, gitdir=ctx.gitdir)
    remote = bcfg.get('remote')
    merge = bcfg.get('merge')
    if remote and merge:
        target = re.sub(r'^refs/heads/', '', merge)
        if remote == '.':
            # Tracking a local branch, so push to the usual remote
            return ctx.remote, target, target
        return remote, target, f'{remote}/{target}'

    # Maybe someone set it up in a way we don't expect, so ask git
    ecode, out = gerry.git_run_command(ctx.gitdir, ['rev-parse', '--abbrev-ref', '--symbolic-full-name',
                                                    f'{branch}@{{upstream}}'])
    upstream = out.strip()
    if ecode > 0 or '/' not in upstream:
        logger.debug('No upstream for %s', branch)
        return None
    remote, target = upstream.split('/', 1)
    return remote, target, upstream


def get_branch_commits(ctx: gerry.ExecContext, branch: str, upstream: str) -> List[Commit]:
    """Commits on branch that aren't in upstream, oldest first."""
    gitargs = ['log', '--reverse', '--format=%x1e%H%x00%ct%x00%B', f'{upstream}..{branch}']
    out = gerry.git_run_checked(ctx.gitdir, gitargs)
    commits = list()
    for chunk in out.split('\x1e'):
        if not chunk.strip():
            continue
        sha, timestamp, message = chunk.split('\x00', 2)
        commits.append(Commit(sha.strip(), message.strip(), int(timestamp)))
    return commits


def list_local_branches(ctx: gerry.ExecContext) -> List[TopicBranch]:
    gitargs = ['for-each-ref', '--format=%(refname:short)%00%(upstream:short)%00%(upstream:track)%00'
                               '%(committerdate:unix)', 'refs/heads/']
    branches = list()
    for line in gerry.git_get_command_lines(ctx.gitdir, gitargs):
        name, upstream, track, timestamp = line.split('\x00')
        branches.append(TopicBranch(name, upstream=upstream or None, timestamp=int(timestamp or 0),
                                    gone='[gone]' in track))
    return branches


def get_branch_tracking(ctx: gerry.ExecContext) -> Dict[str, dict]:
    """Collect our per-branch tracking entries (branch.<name>.gerry-*) for all branches."""
    args = ['config', '-z', '--get-regexp', r'^branch\..*\.%s' % TRACKING_PREFIX]
    ecode, out = gerry.git_run_command(ctx.gitdir, args)
    tracking = dict()
    if ecode > 0 or not out:
        return tracking
    for entry in out.split('\x00'):
        if not entry:
            continue
        key, value = entry.split('\n', 1)
        # branch names can contain dots, so split from the right
        name, cfgkey = key[len('branch.'):].rsplit('.', 1)
        tracking.setdefault(name, dict())[cfgkey.lower()] = value
    return tracking


def record_tracking(ctx: gerry.ExecContext, branch: str, topic: Optional[str] = None,
                    changes: Optional[List[int]] = None, draft: Optional[bool] = None) -> None:
    values = dict()
    if topic is not None:
        values['topic'] = topic
    if changes is not None:
        values['changes'] = ','.join(str(x) for x in changes)
    if draft is not None:
        values['draft'] = 'true' if draft else 'false'
    for key, value in values.items():
        param = f'branch.{branch}.{TRACKING_PREFIX}{key}'
        gerry.git_run_checked(ctx.gitdir, ['config', '--replace-all', param, value])


def pick_change(commit: Commit, found: List[ChangeRef]) -> ChangeRef:
    if not found:
        logger.debug('%s is not known to the server', commit.change_id)
        return ChangeRef(commit.change_id, subject=commit.subject)

    openrefs = [x for x in found if x.is_open]
    targets = {x.branch for x in openrefs}
    if len(targets) > 1:
        raise gerry.AmbiguousTopicError('Change-Id %s is open on several branches: %s'
                                        % (commit.change_id, ', '.join(sorted(targets))))
    if openrefs:
        return openrefs[0]
    # Nothing open, so go with whatever was touched last
    return sorted(found, key=lambda x: (x.updated is not None, x.updated or 0))[-1]


def resolve_branch_to_changes(ctx: gerry.ExecContext, branch: str) -> List[ChangeRef]:
    upstream = get_upstream(ctx, branch)
    if upstream is None:
        raise gerry.NoUpstreamError('Branch %s has no upstream (set one with git branch -u)' % branch)
    commits = get_branch_commits(ctx, branch, upstream[2])
    for commit in commits:
        if not commit.change_id:
            raise gerry.MissingChangeIdError('Commit %s has no Change-Id trailer (try: gerry install-hook)'
                                             % repr(commit))
    if not commits:
        return list()

    found = ctx.server.get_changes_by_ids([x.change_id for x in commits])
    changes = list()
    for commit in commits:
        changes.append(pick_change(commit, found.get(commit.change_id, list())))
    return changes


def find_branches_for(ctx: gerry.ExecContext, ident: ChangeIdentity) -> List[str]:
    tracking = get_branch_tracking(ctx)
    matched = list()
    for tbranch in list_local_branches(ctx):
        bcfg = tracking.get(tbranch.name, dict())
        if ident.kind == 'number':
            numbers = [x.strip() for x in bcfg.get('gerry-changes', '').split(',')]
            if ident.value in numbers:
                matched.append(tbranch.name)
        elif ident.kind == 'topic':
            if bcfg.get('gerry-topic') == ident.value or tbranch.name == ident.value:
                matched.append(tbranch.name)
        elif tbranch.upstream and not tbranch.gone:
            commits = get_branch_commits(ctx, tbranch.name, tbranch.upstream)
            if ident.value in [x.change_id for x in commits]:
                matched.append(tbranch.name)
    return matched


def resolve_identifier_to_branch(ctx: gerry.ExecContext, ident: Union[str, ChangeIdentity]) -> str:
    if isinstance(ident, str):
        ident = ChangeIdentity.parse(ident)
    matched = find_branches_for(ctx, ident)
    if not matched:
        raise gerry.NotFoundError('No local branch tracks %s' % ident.value)
    if len(matched) > 1:
        raise gerry.AmbiguousTopicError('Several local branches track %s: %s' % (ident.value, ', '.join(matched)))
    return matched[0]


def get_current_branch(ctx: gerry.ExecContext) -> str:
    branch = gerry.git_get_current_branch(ctx.gitdir)
    if not branch:
        raise gerry.UsageError('Not currently on a branch (detached HEAD?)')
    return branch
