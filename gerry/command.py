#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import logging
import sys
import traceback

import gerry

from gerry.squad import SquadAction

logger = gerry.logger


class GerryArgumentParser(argparse.ArgumentParser):
    # Bad arguments are errors like any other, so exit 1 instead of argparse's 2
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, '%s: error: %s\n' % (self.prog, message))


def cmd_topic(ctx, cmdargs):
    import gerry.topic
    gerry.topic.cmd_topic(ctx, cmdargs)


def cmd_checkout(ctx, cmdargs):
    import gerry.topic
    gerry.topic.cmd_checkout(ctx, cmdargs)


def cmd_recheckout(ctx, cmdargs):
    import gerry.topic
    gerry.topic.cmd_recheckout(ctx, cmdargs)


def cmd_up(ctx, cmdargs):
    import gerry.push
    gerry.push.cmd_up(ctx, cmdargs)


def cmd_draft(ctx, cmdargs):
    import gerry.push
    gerry.push.cmd_draft(ctx, cmdargs)


def cmd_ninja(ctx, cmdargs):
    import gerry.push
    gerry.push.cmd_ninja(ctx, cmdargs)


def cmd_clean(ctx, cmdargs):
    import gerry.clean
    gerry.clean.cmd_clean(ctx, cmdargs)


def cmd_patches(ctx, cmdargs):
    import gerry.patches
    gerry.patches.cmd_patches(ctx, cmdargs)


def cmd_status(ctx, cmdargs):
    import gerry.patches
    gerry.patches.cmd_status(ctx, cmdargs)


def cmd_review(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_review(ctx, cmdargs)


def cmd_submit(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_submit(ctx, cmdargs)


def cmd_abandon(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_abandon(ctx, cmdargs)


def cmd_comment(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_comment(ctx, cmdargs)


def cmd_assign(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_assign(ctx, cmdargs)


def cmd_install_hook(ctx, cmdargs):
    import gerry.review
    gerry.review.cmd_install_hook(ctx, cmdargs)


def cmd_squad(ctx, cmdargs):
    import gerry.squad
    gerry.squad.cmd_squad(ctx, cmdargs)


def cmd_push_common_opts(sp):
    sp.add_argument('-b', '--branch', default=None,
                    help='Target branch on the server (default: the upstream of the current branch)')
    sp_topic = sp.add_mutually_exclusive_group()
    sp_topic.add_argument('-t', '--topic', default=None,
                          help='Topic label for the changes (default: the local branch name)')
    sp_topic.add_argument('-T', '--no-topic', dest='notopic', action='store_true', default=False,
                          help='Do not set a topic label')
    sp.add_argument('-r', '--reviewers', nargs='+', action='extend', default=None,
                    help='Reviewers to add (use @name for squads)')
    sp.add_argument('-H', '--hashtags', nargs='+', action='extend', default=None,
                    help='Hashtags to add')
    sp.add_argument('-m', '--comment', default=None,
                    help='Message to post with the new patch sets')
    sp.add_argument('-y', '--yes', action='store_true', default=False,
                    help='Publish previously drafted changes without asking')
    sp.add_argument('--dry-run', dest='dryrun', action='store_true', default=False,
                    help='Show what would be pushed without pushing it')


def cmd_target_opts(sp):
    sp.add_argument('-t', '--target', default=None,
                    help='Change number, Change-Id or topic (default: the changes behind the current branch)')


def cmd_layout_opts(sp):
    import gerry.patches
    sp_layout = sp.add_mutually_exclusive_group()
    sp_layout.add_argument('--table', dest='layout', action='store_const', const='table',
                           help='One row per change (the default)')
    sp_layout.add_argument('--vertical', dest='layout', action='store_const', const='vertical',
                           help='One block per change, one field per line')
    sp_layout.add_argument('--oneline', dest='layout', action='store_const', const='oneline',
                           help='One line per change, using gerry.patches-format')
    sp_layout.add_argument('-f', '--format', default=None,
                           help=gerry.patches.get_format_help().replace('%', '%%'))


def cmd_filter_opts(sp):
    import gerry.patches
    for field in gerry.patches.VALUE_FIELDS + tuple(gerry.patches.FIELD_ALIASES):
        metavar = field.upper()
        sp.add_argument(f'--{field}', action='append', default=None, metavar=metavar,
                        help=f'Only changes matching this {field}')
        sp.add_argument(f'--not-{field}', dest=f'not_{field}', action='append', default=None, metavar=metavar,
                        help=f'Only changes not matching this {field}')
    for field in gerry.patches.BOOL_FIELDS:
        sp.add_argument(f'--{field}', action='store_true', default=False,
                        help=f'Only {field} changes')
        sp.add_argument(f'--not-{field}', dest=f'not_{field}', action='store_true', default=False,
                        help=f'Only changes that are not {field}')


def setup_parser() -> argparse.ArgumentParser:
    # noinspection PyTypeChecker
    parser = GerryArgumentParser(
        prog='gerry',
        description='A tool to keep local topic branches and Gerrit changes in sync',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=gerry.__VERSION__)
    parser.add_argument('-d', '--debug', action='store_true', default=False,
                        help='Add more debugging info to the output')
    parser.add_argument('-q', '--quiet', action='store_true', default=False,
                        help='Output critical information only')
    parser.add_argument('-n', '--no-interactive', action='store_true', default=False,
                        help='Do not ask any interactive questions')
    parser.add_argument('-s', '--server', default=None,
                        help='Use this gerry-server.<name> configuration instead of gerry.server')

    subparsers = parser.add_subparsers(help='sub-command help', dest='subcmd')

    # gerry topic
    sp_topic = subparsers.add_parser('topic', help='Create a new topic branch')
    sp_topic.add_argument('name', help='Name of the new branch')
    sp_topic.add_argument('upstream', nargs='?', default=None,
                          help='What to track (default: <remote>/<gerry.default-branch>)')
    sp_topic.set_defaults(func=cmd_topic)

    # gerry up
    sp_up = subparsers.add_parser('up', aliases=['push'], help='Push the current branch for review')
    cmd_push_common_opts(sp_up)
    sp_up.set_defaults(func=cmd_up)

    # gerry draft
    sp_draft = subparsers.add_parser('draft', help='Push the current branch as drafts')
    cmd_push_common_opts(sp_draft)
    sp_draft.set_defaults(func=cmd_draft)

    # gerry ninja
    sp_ninja = subparsers.add_parser('ninja', aliases=['pubmit'],
                                     help='Push the current branch, approve and submit it')
    cmd_push_common_opts(sp_ninja)
    sp_ninja.set_defaults(func=cmd_ninja)

    # gerry checkout
    sp_co = subparsers.add_parser('checkout', aliases=['co'], help='Check out a change or topic')
    sp_co.add_argument('ident', help='Change number, Change-Id or topic')
    sp_co.add_argument('patchset', nargs='?', type=int, default=None,
                       help='Patch set to check out (default: the latest)')
    sp_co.set_defaults(func=cmd_checkout)

    # gerry recheckout
    sp_reco = subparsers.add_parser('recheckout', aliases=['reco'],
                                    help='Refresh the current branch to the latest patch sets')
    sp_reco.add_argument('-f', '--force', action='store_true', default=False,
                         help='Drop local commits the server does not have')
    sp_reco.set_defaults(func=cmd_recheckout)

    # gerry clean
    sp_clean = subparsers.add_parser('clean', help='Delete local branches that have been merged')
    sp_clean.add_argument('--age', default=None,
                          help='Only consider branches older than this (e.g. 2w3d5h)')
    sp_clean.add_argument('--abandoned', action='store_true', default=False,
                          help='Also consider abandoned changes as done')
    sp_clean.add_argument('--dry-run', dest='dryrun', action='store_true', default=False,
                          help='Only show what would be deleted')
    sp_clean.add_argument('-f', '--force', action='store_true', default=False,
                          help='Do not ask for confirmation')
    sp_clean.set_defaults(func=cmd_clean)

    # gerry patches
    sp_pa = subparsers.add_parser('patches', aliases=['patch', 'pa'], help='List open changes')
    cmd_filter_opts(sp_pa)
    cmd_layout_opts(sp_pa)
    sp_pa.set_defaults(func=cmd_patches)

    # gerry status
    sp_st = subparsers.add_parser('status', aliases=['st'], help='Show the changes behind the current branch')
    cmd_layout_opts(sp_st)
    sp_st.set_defaults(func=cmd_status)

    # gerry review
    sp_rev = subparsers.add_parser('review', help='Vote on changes')
    sp_rev.add_argument('score', type=int, help='Code-Review score, -2 to +2')
    sp_rev.add_argument('message', nargs='?', default=None, help='Message to post with the vote')
    sp_rev.add_argument('--verified', type=int, default=None, help='Also vote Verified, -1 to +1')
    cmd_target_opts(sp_rev)
    sp_rev.set_defaults(func=cmd_review)

    # gerry submit
    sp_sub = subparsers.add_parser('submit', help='Submit changes')
    cmd_target_opts(sp_sub)
    sp_sub.set_defaults(func=cmd_submit)

    # gerry abandon
    sp_ab = subparsers.add_parser('abandon', help='Abandon changes')
    sp_ab.add_argument('-m', '--message', default=None, help='Reason for abandoning')
    cmd_target_opts(sp_ab)
    sp_ab.set_defaults(func=cmd_abandon)

    # gerry comment
    sp_com = subparsers.add_parser('comment', help='Post a comment on changes')
    sp_com.add_argument('message', help='The comment')
    cmd_target_opts(sp_com)
    sp_com.set_defaults(func=cmd_comment)

    # gerry assign
    sp_as = subparsers.add_parser('assign', help='Add reviewers to changes')
    sp_as.add_argument('reviewers', nargs='+', help='Reviewers to add (use @name for squads)')
    cmd_target_opts(sp_as)
    sp_as.set_defaults(func=cmd_assign)

    # gerry squad
    sp_sq = subparsers.add_parser('squad', aliases=['team'], help='Manage named groups of reviewers')
    sp_sq.set_defaults(func=cmd_squad, squad_action=SquadAction.LIST, name=None)
    sq_sub = sp_sq.add_subparsers(help='squad operations', dest='squad_subcmd')
    sq_list = sq_sub.add_parser(SquadAction.LIST.value, help='Show squads')
    sq_list.add_argument('name', nargs='?', default=None, help='Only show this squad')
    sq_list.set_defaults(squad_action=SquadAction.LIST)
    sq_set = sq_sub.add_parser(SquadAction.SET.value, help='Create a squad or replace its members')
    sq_set.add_argument('name', help='Squad name')
    sq_set.add_argument('members', nargs='+', help='Reviewers')
    sq_set.set_defaults(squad_action=SquadAction.SET)
    sq_add = sq_sub.add_parser(SquadAction.ADD.value, help='Add members to a squad')
    sq_add.add_argument('name', help='Squad name')
    sq_add.add_argument('members', nargs='+', help='Reviewers')
    sq_add.set_defaults(squad_action=SquadAction.ADD)
    sq_rm = sq_sub.add_parser(SquadAction.REMOVE.value, help='Remove members from a squad')
    sq_rm.add_argument('name', help='Squad name')
    sq_rm.add_argument('members', nargs='+', help='Reviewers')
    sq_rm.set_defaults(squad_action=SquadAction.REMOVE)
    sq_del = sq_sub.add_parser(SquadAction.DELETE.value, help='Delete a squad')
    sq_del.add_argument('name', help='Squad name')
    sq_del.set_defaults(squad_action=SquadAction.DELETE)
    sq_ren = sq_sub.add_parser(SquadAction.RENAME.value, help='Rename a squad')
    sq_ren.add_argument('name', help='Current squad name')
    sq_ren.add_argument('newname', help='New squad name')
    sq_ren.set_defaults(squad_action=SquadAction.RENAME)

    # gerry install-hook
    sp_hook = subparsers.add_parser('install-hook', help='Install the commit-msg hook from the server')
    sp_hook.add_argument('--force', action='store_true', default=False,
                         help='Replace an existing commit-msg hook')
    sp_hook.set_defaults(func=cmd_install_hook)

    return parser


def run(cmdargs: argparse.Namespace, ctx: gerry.ExecContext = None) -> int:
    """Run a parsed command and turn whatever happened into an exit code."""
    try:
        if ctx is None:
            ctx = gerry.ExecContext(servername=cmdargs.server,
                                    interactive=not cmdargs.no_interactive and sys.stdin.isatty())
        cmdargs.func(ctx, cmdargs)
    except gerry.GerryError as ex:
        logger.critical('%s: %s', ex.kind, ex.message)
        for detail in ex.get_details():
            logger.debug('  %s', detail)
        return 1
    except KeyboardInterrupt:
        logger.critical('Aborted')
        return 130
    except Exception as ex:
        logger.critical('Unexpected error: %s', ex)
        logger.debug(traceback.format_exc())
        return 1
    return 0


def cmd(argv=None):
    parser = setup_parser()
    cmdargs = parser.parse_args(argv)
    logger.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    formatter = logging.Formatter('%(message)s')
    ch.setFormatter(formatter)

    if cmdargs.quiet:
        ch.setLevel(logging.CRITICAL)
    elif cmdargs.debug:
        ch.setLevel(logging.DEBUG)
    else:
        ch.setLevel(logging.INFO)

    logger.addHandler(ch)

    if 'func' not in cmdargs:
        parser.print_help()
        sys.exit(1)

    sys.exit(run(cmdargs))


if __name__ == '__main__':
    cmd()
