#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import datetime
import time

import gerry
import gerry.refmap

from typing import Optional, List, Set
from gerry.identity import TopicBranch

logger = gerry.logger


class ScanResult:
    to_remove: List[TopicBranch]
    kept: List[TopicBranch]

    def __init__(self):
        self.to_remove = list()
        self.kept = list()

    def keep(self, tbranch: TopicBranch, reason: str) -> None:
        logger.debug('Keeping %s: %s', tbranch.name, reason)
        tbranch.reason = reason
        self.kept.append(tbranch)

    def remove(self, tbranch: TopicBranch, reason: str) -> None:
        logger.debug('Proposing %s: %s', tbranch.name, reason)
        tbranch.reason = reason
        self.to_remove.append(tbranch)


def find_merged_change_ids(ctx: gerry.ExecContext, upstream: str, change_ids: Set[str]) -> Set[str]:
    """Which of these Change-Ids appear as trailers in the upstream history?"""
    if not change_ids:
        return set()
    gitargs = ['log', '--format=%x1e%B', '-F']
    for change_id in sorted(change_ids):
        gitargs += ['--grep', change_id]
    gitargs.append(upstream)
    out = gerry.git_run_checked(ctx.gitdir, gitargs)
    found = set()
    for chunk in out.split('\x1e'):
        # --grep matches anywhere in the message, so make sure it's a real trailer
        for change_id in gerry.CHANGEID_RE.findall(chunk):
            if change_id in change_ids:
                found.add(change_id)
    return found


def find_abandoned_change_ids(ctx: gerry.ExecContext, change_ids: Set[str]) -> Set[str]:
    if not change_ids:
        return set()
    found = ctx.server.get_changes_by_ids(sorted(change_ids))
    abandoned = set()
    for change_id, changes in found.items():
        if changes and all(x.status == 'ABANDONED' for x in changes):
            abandoned.add(change_id)
    return abandoned


def scan(ctx: gerry.ExecContext, age: Optional[datetime.timedelta] = None, abandoned: bool = False,
         now: Optional[float] = None) -> ScanResult:
    if now is None:
        now = time.time()
    current = gerry.git_get_current_branch(ctx.gitdir)
    result = ScanResult()
    for tbranch in gerry.refmap.list_local_branches(ctx):
        if tbranch.name == current:
            result.keep(tbranch, 'current branch')
            continue
        if not tbranch.upstream:
            result.keep(tbranch, 'no upstream')
            continue
        if tbranch.gone:
            result.keep(tbranch, 'upstream %s is gone' % tbranch.upstream)
            continue
        tbranch.commits = gerry.refmap.get_branch_commits(ctx, tbranch.name, tbranch.upstream)
        if not tbranch.commits:
            result.keep(tbranch, 'no commits of its own')
            continue
        if None in tbranch.change_ids:
            result.keep(tbranch, 'has commits without a Change-Id')
            continue
        if age is not None and now - tbranch.timestamp < age.total_seconds():
            result.keep(tbranch, 'younger than %s' % gerry.format_age(age))
            continue

        wanted = set(tbranch.change_ids)
        missing = wanted - find_merged_change_ids(ctx, tbranch.upstream, wanted)
        if missing and abandoned:
            missing -= find_abandoned_change_ids(ctx, missing)
        if missing:
            result.keep(tbranch, '%s of %s change(s) not merged' % (len(missing), len(wanted)))
            continue
        result.remove(tbranch, 'all %s change(s) merged' % len(wanted))

    return result


def delete_branches(ctx: gerry.ExecContext, branches: List[TopicBranch]) -> List[gerry.StepResult]:
    results = list()
    for tbranch in branches:
        ecode, out = gerry.git_run_command(ctx.gitdir, ['branch', '-D', tbranch.name], logstderr=True)
        if ecode > 0:
            results.append(gerry.StepResult(tbranch.name, ok=False, error=out.strip()))
        else:
            results.append(gerry.StepResult(tbranch.name))
    return results


def cmd_clean(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    age = None
    if cmdargs.age:
        age = gerry.parse_duration(cmdargs.age)
    result = scan(ctx, age=age, abandoned=cmdargs.abandoned)
    for tbranch in result.kept:
        logger.debug('  keeping %s', repr(tbranch))
    if not result.to_remove:
        logger.info('Nothing to clean up.')
        return

    logger.info('These branches can be removed:')
    for tbranch in result.to_remove:
        logger.info('  %s', repr(tbranch))
    if cmdargs.dryrun:
        logger.info('---')
        logger.info('DRYRUN: not deleting anything')
        return

    if not cmdargs.force:
        if not ctx.interactive:
            raise gerry.UsageError('Refusing to delete branches without confirmation, pass --force')
        input('Press Enter to delete them or Ctrl-C to abort')

    results = delete_branches(ctx, result.to_remove)
    logger.info('Deleted:')
    gerry.report_results(results, 'Branch deletion')
