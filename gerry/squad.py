#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import enum
import json
import os

import gerry

from typing import Dict, List, Optional

logger = gerry.logger

SQUAD_MARKER = '@'
SQUADS_FILE = 'squads.json'


class SquadAction(enum.Enum):
    LIST = 'list'
    SET = 'set'
    ADD = 'add'
    REMOVE = 'remove'
    DELETE = 'delete'
    RENAME = 'rename'


def get_squads_path() -> str:
    return os.path.join(gerry.get_data_dir(), SQUADS_FILE)


class SquadRegistry:
    """Named reviewer groups, stored per server configuration."""
    path: str
    scope: str

    def __init__(self, path: str, scope: str):
        self.path = path
        self.scope = scope

    def _load_all(self) -> Dict[str, Dict[str, List[str]]]:
        try:
            with open(self.path, 'r', encoding='utf-8') as fh:
                return json.load(fh)
        except FileNotFoundError:
            return dict()
        except ValueError as ex:
            raise gerry.UsageError('Unable to parse %s: %s' % (self.path, ex))

    def load(self) -> Dict[str, List[str]]:
        return self._load_all().get(self.scope, dict())

    def _save(self, squads: Dict[str, List[str]]) -> None:
        alldata = self._load_all()
        alldata[self.scope] = squads
        tmpfile = self.path + '.tmp'
        with open(tmpfile, 'w', encoding='utf-8') as fh:
            json.dump(alldata, fh, indent=2, sort_keys=True)
        os.replace(tmpfile, self.path)
        logger.debug('Saved squads to %s', self.path)

    @staticmethod
    def _merge(members: List[str], extra: List[str]) -> List[str]:
        merged = list(members)
        for member in extra:
            if member not in merged:
                merged.append(member)
        return merged

    def get(self, name: str) -> List[str]:
        squads = self.load()
        if name not in squads:
            raise gerry.NotFoundError('No such squad: %s' % name)
        return squads[name]

    def set(self, name: str, members: List[str]) -> List[str]:
        squads = self.load()
        squads[name] = self._merge(list(), members)
        self._save(squads)
        return squads[name]

    def add(self, name: str, members: List[str]) -> List[str]:
        squads = self.load()
        squads[name] = self._merge(squads.get(name, list()), members)
        self._save(squads)
        return squads[name]

    def remove(self, name: str, members: List[str]) -> List[str]:
        squads = self.load()
        if name not in squads:
            raise gerry.NotFoundError('No such squad: %s' % name)
        squads[name] = [x for x in squads[name] if x not in members]
        self._save(squads)
        return squads[name]

    def delete(self, name: str) -> None:
        squads = self.load()
        if name not in squads:
            raise gerry.NotFoundError('No such squad: %s' % name)
        squads.pop(name)
        self._save(squads)

    def rename(self, name: str, newname: str) -> None:
        squads = self.load()
        if name not in squads:
            raise gerry.NotFoundError('No such squad: %s' % name)
        if newname in squads:
            raise gerry.NameConflictError('Squad %s already exists' % newname)
        squads[newname] = squads.pop(name)
        self._save(squads)

    def expand(self, reviewers: Optional[List[str]]) -> List[str]:
        """Replace @squad tokens with squad members, dropping duplicates."""
        if not reviewers:
            return list()
        squads = None
        expanded = list()
        for reviewer in reviewers:
            if reviewer.startswith(SQUAD_MARKER):
                if squads is None:
                    squads = self.load()
                name = reviewer[len(SQUAD_MARKER):]
                if name not in squads:
                    raise gerry.NotFoundError('No such squad: %s' % name)
                expanded = self._merge(expanded, squads[name])
            else:
                expanded = self._merge(expanded, [reviewer])
        return expanded


def show_squads(squads: Dict[str, List[str]]) -> None:
    if not squads:
        logger.info('No squads defined.')
        return
    for name in sorted(squads):
        logger.info('%s: %s', name, ', '.join(squads[name]))


def cmd_squad(ctx: gerry.ExecContext, cmdargs: argparse.Namespace) -> None:
    registry = ctx.squads
    action = cmdargs.squad_action
    if action is SquadAction.LIST:
        if cmdargs.name:
            show_squads({cmdargs.name: registry.get(cmdargs.name)})
        else:
            show_squads(registry.load())
    elif action is SquadAction.SET:
        members = registry.set(cmdargs.name, cmdargs.members)
        logger.info('%s: %s', cmdargs.name, ', '.join(members))
    elif action is SquadAction.ADD:
        members = registry.add(cmdargs.name, cmdargs.members)
        logger.info('%s: %s', cmdargs.name, ', '.join(members))
    elif action is SquadAction.REMOVE:
        members = registry.remove(cmdargs.name, cmdargs.members)
        logger.info('%s: %s', cmdargs.name, ', '.join(members))
    elif action is SquadAction.DELETE:
        registry.delete(cmdargs.name)
        logger.info('Deleted squad %s', cmdargs.name)
    elif action is SquadAction.RENAME:
        registry.rename(cmdargs.name, cmdargs.newname)
        logger.info('Renamed squad %s to %s', cmdargs.name, cmdargs.newname)
    else:
        raise gerry.UsageError('Unknown squad action: %s' % action)
