#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import urllib.parse

import gerry
import gerry.refmap

from typing import Optional, List
from gerry.identity import ChangeRef

logger = gerry.logger


def build_push_ref(target: str, topic: Optional[str] = None, draft: bool = False) -> str:
    if not target:
        raise gerry.UsageError('No target branch to push to')
    if draft:
        ref = f'refs/drafts/{target}'
    else:
        ref = f'refs/for/{target}'
    if topic:
        ref += f'/{topic}'
    return ref


class PushPlan:
    remote: str
    source: str
    target: str
    topic: str
    draft: bool = False
    hashtags: List[str]
    comment: Optional[str] = None
    reviewers: List[str]
    requires_confirmation: bool = False

    def __init__(self, remote: str, source: str, target: str, topic: str = '', draft: bool = False,
                 hashtags: Optional[List[str]] = None, comment: Optional[str] = None,
                 reviewers: Optional[List[str]] = None, requires_confirmation: bool = False):
        self.remote = remote
        self.source = source
        self.target = target
        self.topic = topic
        self.draft = draft
        self.hashtags = hashtags if hashtags else list()
        self.comment = comment
        self.reviewers = reviewers if reviewers else list()
        self.requires_confirmation = requires_confirmation

    @property
    def dest_ref(self) -> str:
        return build_push_ref(self.target, self.topic, self.draft)

    @property
    def push_options(self) -> List[str]:
        opts = list()
        for reviewer in self.reviewers:
            opts.append(f'r={reviewer}')
        for hashtag in self.hashtags:
            opts.append(f'hashtag={hashtag}')
        if self.comment:
            # gerrit wants the message percent-encoded
            opts.append('m=%s' % urllib.parse.quote(self.comment, safe=''))
        return opts

    def git_args(self) -> List[str]:
        args = ['push']
        for opt in self.push_options:
            args += ['-o', opt]
        args += [self.remote, f'{self.source}:{self.dest_ref}']
        return args

    def __repr__(self):
        out = list()
        out.append('  remote: %s' % self.remote)
        out.append('  ref: %s' % self.dest_ref)
        if self.reviewers:
            out.append('  reviewers: %s' % ', '.join(self.reviewers))
        if self.hashtags:
            out.append('  hashtags: %s' % ', '.join(self.hashtags))
        if self.comment:
            out.append('  comment: %s' % self.comment)
        return '\n'.join(out)


def plan(ctx: gerry.ExecContext, branch: Optional[str], target: Optional[str] = None,
         topic: Optional[str] = None, notopic: bool = False, draft: bool = False,
         hashtags: Optional[List[str]] = None, comment: Optional[str] = None,
         reviewers: Optional[List[str]] = None, changes: Optional[List[ChangeRef]] = None) -> PushPlan:
    if not branch:
        raise gerry.UsageError('Not currently on a branch (detached HEAD?)')
    upstream = gerry.refmap.get_upstream(ctx, branch)
    if target is None:
        if upstream is None:
            raise gerry.NoUpstreamError('Branch %s has no upstream, use --branch to say where to push' % branch)
        target = upstream[1]
    remote = upstream[0] if upstream else ctx.remote

    if notopic:
        topic = ''
    elif not topic:
        topic = branch

    tracking = gerry.refmap.get_branch_tracking(ctx).get(branch, dict())
    was_draft = tracking.get('gerry-draft') == 'true'
    if changes and any(x.draft for x in changes):
        was_draft = True

    return PushPlan(remote, branch, target, topic=topic, draft=draft, hashtags=hashtags, comment=comment,
                    reviewers=ctx.squads.expand(reviewers), requires_confirmation=was_draft and not draft)


def confirm_plan(ctx: gerry.ExecContext, pplan: PushPlan, assume_yes: bool = False) -> None:
    if not pplan.requires_confirmation or assume_yes:
        return
    if not ctx.interactive:
        raise gerry.UsageError('Branch %s was previously pushed as a draft, pass --yes to publish it'
                               % pplan.source)
    logger.info('Branch %s was previously pushed as a draft.', pplan.source)
    logger.info('Pushing to %s will make it visible to everyone.', pplan.dest_ref)
    input('Press Enter to publish or Ctrl-C to abort')


def execute_push(ctx: gerry.ExecContext, pplan: PushPlan) -> str:
    logger.info('Pushing %s to %s', pplan.source, pplan.dest_ref)
    out = gerry.git_run_checked(ctx.gitdir, pplan.git_args(), logstderr=True)
    gerry.refmap.record_tracking(ctx, pplan.source, topic=pplan.topic, draft=pplan.draft)
    for line in out.splitlines():
        if line.startswith('remote:') and line[7:].strip():
            logger.info(line)
    return out


def track_pushed_changes(ctx: gerry.ExecContext, branch: str) -> List[ChangeRef]:
    """Record the change numbers a push turned into, so the branch can be found by number later."""
    try:
        changes = gerry.refmap.resolve_branch_to_changes(ctx, branch)
    except gerry.GerryError as ex:
        results = [
            gerry.StepResult('push %s' % branch),
            gerry.StepResult('look up changes for %s' % branch, ok=False, error=str(ex)),
        ]
        raise gerry.PartialFailureError('Pushed %s, but could not look up its changes' % branch, results)
    gerry.refmap.record_tracking(ctx, branch, changes=[x.number for x in changes if x.pushed])
    return changes


def plan_from_args(ctx: gerry.ExecContext, cmdargs: argparse.Namespace, draft: bool) -> PushPlan:
    branch = gerry.refmap.get_current_branch(ctx)
    changes = None
    if gerry.refmap.get_upstream(ctx, branch) is not None:
        # Someone may have marked these as drafts on the server, or from another clone
        changes = gerry.refmap.resolve_branch_to_changes(ctx, branch)
    return plan(ctx, branch, target=cmdargs.branch, topic=cmdargs.topic, notopic=cmdargs.notopic,
                draft=draft, hashtags=cmdargs.hashtags, comment=cmdargs.comment, reviewers=cmdargs.reviewers,
                changes=changes)


def run_push(ctx: gerry.ExecContext, cmdargs: argparse.Namespace, draft: bool) -> Optional[List[ChangeRef]]:
    """Push the current branch and return the changes it maps to, or None on a dry run."""
    pplan = plan_from_args(ctx, cmdargs, draft)
    if cmdargs.dryrun:
        logger.info('Would push %s:', pplan.source)
        logger.info(repr(pplan))
        logger.info('  git %s', ' '.join(pplan.git_args()))
        return None
    confirm_plan(ctx, pplan, assume_yes=cmdargs.yes)
    execute_push(ctx, pplan)
    return track_pushed_changes(ctx, pplan.source)


def cmd_up(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    run_push(ctx, cmdargs, draft=False)


def cmd_draft(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    run_push(ctx, cmdargs, draft=True)


def submit_changes(ctx: gerry.ExecContext, changes: List[ChangeRef]) -> List[gerry.StepResult]:
    labels = gerry.parse_labels(ctx.config.get('ninja-labels', ''))
    results = list()
    for change in changes:
        if not change.pushed:
            results.append(gerry.StepResult(repr(change), ok=False, error='not found on the server after push'))
            continue
        try:
            if labels:
                ctx.server.review(change, labels=labels)
            ctx.server.submit(change)
            results.append(gerry.StepResult('%s %s' % (change.number, change.subject)))
        except gerry.GerryError as ex:
            results.append(gerry.StepResult('%s %s' % (change.number, change.subject), ok=False, error=str(ex)))
    return results


def cmd_ninja(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    # Validate labels before anything hits the remote
    gerry.parse_labels(ctx.config.get('ninja-labels', ''))
    changes = run_push(ctx, cmdargs, draft=False)
    if changes is None:
        return
    if not changes:
        logger.info('Nothing to submit.')
        return
    logger.info('Submitting %s change(s):', len(changes))
    results = submit_changes(ctx, changes)
    gerry.report_results(results, 'Submit')
