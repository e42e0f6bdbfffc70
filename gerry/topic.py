#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse

import gerry
import gerry.refmap

from typing import List, Tuple
from gerry.identity import ChangeIdentity, ChangeRef, Commit

logger = gerry.logger


def get_chain(changes: List[ChangeRef]) -> Tuple[ChangeRef, List[ChangeRef]]:
    """Find the tip of a chain of dependent changes, return it and the chain, base first."""
    if not changes:
        raise gerry.NotFoundError('No changes to look at')
    targets = {x.branch for x in changes}
    if len(targets) > 1:
        raise gerry.AmbiguousTopicError('Changes target several branches: %s' % ', '.join(sorted(targets)))
    byrev = {x.revision: x for x in changes}
    parents = set()
    for change in changes:
        parents.update(change.parents)
    tips = [x for x in changes if x.revision not in parents]
    if len(tips) != 1:
        raise gerry.AmbiguousTopicError('Changes %s do not form a single chain'
                                        % ', '.join(str(x.number) for x in changes))
    tip = tips[0]
    chain = list()
    current = tip
    while current is not None:
        chain.insert(0, current)
        current = None
        for parent in chain[0].parents:
            if parent in byrev and byrev[parent] not in chain:
                current = byrev[parent]
                break
    if len(chain) != len(changes):
        raise gerry.AmbiguousTopicError('Changes %s do not form a single chain'
                                        % ', '.join(str(x.number) for x in changes))
    return tip, chain


def find_remote_changes(ctx: gerry.ExecContext, ident: ChangeIdentity) -> Tuple[ChangeRef, List[ChangeRef]]:
    if ident.kind == 'topic':
        changes = ctx.server.get_changes(ident, only_open=True)
        if not changes:
            raise gerry.NotFoundError('No open changes with topic %s' % ident.value)
        return get_chain(changes)

    changes = ctx.server.get_changes(ident)
    if not changes:
        raise gerry.NotFoundError('No such change: %s' % ident.value)
    # A Change-Id can exist on several branches
    openrefs = [x for x in changes if x.is_open]
    if len(openrefs) > 1:
        raise gerry.AmbiguousTopicError('%s is open on several branches: %s'
                                        % (ident.value, ', '.join(sorted(x.branch for x in openrefs))))
    change = openrefs[0] if openrefs else changes[0]
    return change, [change]


def fetch_change(ctx: gerry.ExecContext, change: ChangeRef, localref: str, patchset=None) -> None:
    refspecs = [f'{change.fetch_ref(patchset)}:{localref}']
    # Make sure the upstream we're about to track exists
    refspecs.append(f'+refs/heads/{change.branch}:refs/remotes/{ctx.remote}/{change.branch}')
    logger.info('Fetching %s', change.fetch_ref(patchset))
    gerry.git_run_checked(ctx.gitdir, ['fetch', ctx.remote] + refspecs)


def cmd_topic(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    name = cmdargs.name
    if gerry.git_branch_exists(ctx.gitdir, name):
        raise gerry.NameConflictError('Branch %s already exists' % name)
    upstream = cmdargs.upstream
    if not upstream:
        upstream = '%s/%s' % (ctx.remote, ctx.config.get('default-branch', 'master'))
    gerry.git_run_checked(ctx.gitdir, ['checkout', '--track', '-b', name, upstream])
    gerry.refmap.record_tracking(ctx, name, topic=name)
    logger.info('Created topic branch %s tracking %s', name, upstream)


def cmd_checkout(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    ident = ChangeIdentity.parse(cmdargs.ident, patchset=cmdargs.patchset)
    matched = gerry.refmap.find_branches_for(ctx, ident)
    if len(matched) > 1:
        raise gerry.AmbiguousTopicError('Several local branches track %s: %s' % (ident.value, ', '.join(matched)))
    if matched:
        gerry.git_run_checked(ctx.gitdir, ['checkout', matched[0]])
        logger.info('Switched to %s', matched[0])
        if ident.patchset is not None:
            logger.info('Branch already exists, use "gerry recheckout" to refresh it')
        return

    tip, chain = find_remote_changes(ctx, ident)
    if ident.kind == 'topic':
        branch = ident.value
    elif tip.topic:
        branch = tip.topic
    else:
        branch = f'review/{tip.number}'
    if gerry.git_branch_exists(ctx.gitdir, branch):
        raise gerry.NameConflictError('Branch %s exists but does not track %s' % (branch, ident.value))

    fetch_change(ctx, tip, f'refs/heads/{branch}', ident.patchset)
    gerry.git_run_checked(ctx.gitdir, ['branch', '--set-upstream-to', f'{ctx.remote}/{tip.branch}', branch])
    gerry.git_run_checked(ctx.gitdir, ['checkout', branch])
    gerry.refmap.record_tracking(ctx, branch, topic=tip.topic or '', changes=[x.number for x in chain],
                                 draft=any(x.draft for x in chain))
    logger.info('Checked out %s with %s change(s):', branch, len(chain))
    for change in chain:
        logger.info('  %s', repr(change))


def find_local_only(ctx: gerry.ExecContext, branch: str, chain: List[ChangeRef]) -> List[Commit]:
    """Commits on branch that a reset to the server's chain would throw away."""
    upstream = gerry.refmap.get_upstream(ctx, branch)
    if upstream is None:
        raise gerry.NoUpstreamError('Branch %s has no upstream, unable to tell which commits are local' % branch)
    remote_ids = {x.change_id for x in chain}
    return [x for x in gerry.refmap.get_branch_commits(ctx, branch, upstream[2]) if x.change_id not in remote_ids]


def cmd_recheckout(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    branch = gerry.refmap.get_current_branch(ctx)
    if gerry.git_get_repo_status(ctx.gitdir):
        raise gerry.UsageError('Branch %s has uncommitted changes, commit or stash them first' % branch)

    tracking = gerry.refmap.get_branch_tracking(ctx).get(branch, dict())
    topic = tracking.get('gerry-topic')
    if topic:
        tip, chain = find_remote_changes(ctx, ChangeIdentity('topic', topic))
    else:
        chain = [x for x in gerry.refmap.resolve_branch_to_changes(ctx, branch) if x.pushed]
        if not chain:
            raise gerry.NotFoundError('Branch %s has nothing on the server to refresh from' % branch)
        tip = chain[-1]

    head = gerry.git_get_command_lines(ctx.gitdir, ['rev-parse', 'HEAD'])
    if head and head[0] == tip.revision:
        logger.info('Branch %s is already at the latest patch set', branch)
        return
    if not cmdargs.force:
        local = find_local_only(ctx, branch, chain)
        if local:
            for commit in local:
                logger.info('  %s', repr(commit))
            raise gerry.UsageError('Branch %s has %s commit(s) the server does not have, use --force to drop them'
                                   % (branch, len(local)))
    logger.info('Fetching %s', tip.fetch_ref())
    gerry.git_run_checked(ctx.gitdir, ['fetch', ctx.remote, tip.fetch_ref()])
    gerry.git_run_checked(ctx.gitdir, ['reset', '--hard', 'FETCH_HEAD'])
    gerry.refmap.record_tracking(ctx, branch, changes=[x.number for x in chain],
                                 draft=any(x.draft for x in chain))
    logger.info('Branch %s now at %s', branch, repr(tip))
