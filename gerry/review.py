#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import os
import stat

import gerry
import gerry.refmap

from typing import Optional, List, Callable
from gerry.identity import ChangeIdentity, ChangeRef

logger = gerry.logger

CODE_REVIEW_RANGE = range(-2, 3)
VERIFIED_RANGE = range(-1, 2)


def get_targets(ctx: gerry.ExecContext, target: Optional[str] = None) -> List[ChangeRef]:
    """The changes a review command should act on, in order."""
    if target:
        ident = ChangeIdentity.parse(target)
        changes = ctx.server.get_changes(ident, only_open=(ident.kind == 'topic'))
        if not changes:
            raise gerry.NotFoundError('Nothing on the server matches %s' % target)
        if ident.kind != 'topic':
            openrefs = [x for x in changes if x.is_open]
            if len(openrefs) > 1:
                raise gerry.AmbiguousTopicError('%s is open on several branches, use the change number' % target)
            if openrefs:
                changes = openrefs
            else:
                changes = changes[:1]
        return changes

    branch = gerry.refmap.get_current_branch(ctx)
    changes = list()
    for change in gerry.refmap.resolve_branch_to_changes(ctx, branch):
        if not change.pushed:
            logger.info('Skipping %s', repr(change))
            continue
        changes.append(change)
    if not changes:
        raise gerry.NotFoundError('Branch %s has no changes on the server' % branch)
    return changes


def run_on_changes(changes: List[ChangeRef], action: Callable[[ChangeRef], None]) -> List[gerry.StepResult]:
    results = list()
    for change in changes:
        item = '%s %s' % (change.number, change.subject)
        try:
            action(change)
            results.append(gerry.StepResult(item))
        except gerry.GerryError as ex:
            results.append(gerry.StepResult(item, ok=False, error=str(ex)))
    return results


def cmd_review(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    if cmdargs.score not in CODE_REVIEW_RANGE:
        raise gerry.UsageError('Code-Review score must be between -2 and +2, got %s' % cmdargs.score)
    labels = {'Code-Review': cmdargs.score}
    if cmdargs.verified is not None:
        if cmdargs.verified not in VERIFIED_RANGE:
            raise gerry.UsageError('Verified score must be between -1 and +1, got %s' % cmdargs.verified)
        labels['Verified'] = cmdargs.verified
    changes = get_targets(ctx, cmdargs.target)
    logger.info('Reviewing %s change(s) with %s', len(changes),
                ', '.join('%s=%+d' % (x, y) for x, y in labels.items()))
    results = run_on_changes(changes, lambda x: ctx.server.review(x, message=cmdargs.message, labels=labels))
    gerry.report_results(results, 'Review')


def cmd_submit(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    changes = get_targets(ctx, cmdargs.target)
    logger.info('Submitting %s change(s):', len(changes))
    results = run_on_changes(changes, ctx.server.submit)
    gerry.report_results(results, 'Submit')


def cmd_abandon(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    changes = get_targets(ctx, cmdargs.target)
    logger.info('Abandoning %s change(s):', len(changes))
    results = run_on_changes(changes, lambda x: ctx.server.abandon(x, message=cmdargs.message))
    gerry.report_results(results, 'Abandon')


def cmd_comment(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    if not cmdargs.message.strip():
        raise gerry.UsageError('Refusing to post an empty comment')
    changes = get_targets(ctx, cmdargs.target)
    logger.info('Commenting on %s change(s):', len(changes))
    results = run_on_changes(changes, lambda x: ctx.server.review(x, message=cmdargs.message))
    gerry.report_results(results, 'Comment')


def cmd_assign(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    reviewers = ctx.squads.expand(cmdargs.reviewers)
    if not reviewers:
        raise gerry.UsageError('No reviewers to add')
    changes = get_targets(ctx, cmdargs.target)
    logger.info('Adding %s to %s change(s):', ', '.join(reviewers), len(changes))
    results = list()
    for change in changes:
        for reviewer in reviewers:
            item = '%s %s' % (change.number, reviewer)
            try:
                ctx.server.add_reviewer(change, reviewer)
                results.append(gerry.StepResult(item))
            except gerry.GerryError as ex:
                results.append(gerry.StepResult(item, ok=False, error=str(ex)))
    gerry.report_results(results, 'Assign')


def get_hooks_dir(ctx: gerry.ExecContext) -> str:
    out = gerry.git_run_checked(ctx.gitdir, ['rev-parse', '--git-path', 'hooks'])
    return os.path.abspath(out.strip())


def cmd_install_hook(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    hookdir = get_hooks_dir(ctx)
    hookpath = os.path.join(hookdir, 'commit-msg')
    if os.path.exists(hookpath) and not cmdargs.force:
        raise gerry.UsageError('%s already exists, use --force to replace it' % hookpath)
    hook = ctx.server.get_hook('commit-msg')
    os.makedirs(hookdir, exist_ok=True)
    with open(hookpath, 'wb') as fh:
        fh.write(hook)
    mode = os.stat(hookpath).st_mode
    os.chmod(hookpath, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info('Installed %s', hookpath)
