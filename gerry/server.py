#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import json
import re
import urllib.parse
import concurrent.futures

import requests

import gerry

from typing import Optional, List, Dict
from gerry.identity import ChangeIdentity, ChangeRef

logger = gerry.logger

# Gerrit prefixes all JSON responses with this to defeat XSSI
MAGIC_PREFIX = ")]}'"

QUERY_OPTIONS = ['CURRENT_REVISION', 'CURRENT_COMMIT', 'DETAILED_ACCOUNTS', 'DETAILED_LABELS', 'REVIEWED']


class GerritServer:
    url: str
    project: Optional[str] = None
    user: Optional[str] = None
    limit: int = 100
    workers: int = 4

    def __init__(self, url: str, project: Optional[str] = None, user: Optional[str] = None,
                 password: Optional[str] = None, limit: int = 100, workers: int = 4,
                 session: Optional[requests.Session] = None):
        self.url = url.rstrip('/')
        self.project = project
        self.user = user
        self.limit = limit
        self.workers = workers
        if session is None:
            session = gerry.get_requests_session()
        self.session = session
        self.authenticated = False
        if user and password:
            self.session.auth = (user, password)
            self.authenticated = True
        self._self_account = None

    def endpoint(self, path: str) -> str:
        path = path.lstrip('/')
        if self.authenticated:
            return '/'.join((self.url, 'a', path))
        return '/'.join((self.url, path))

    @staticmethod
    def decode(text: str):
        if text.startswith(MAGIC_PREFIX):
            text = text[len(MAGIC_PREFIX):]
        text = text.strip()
        if not text:
            return None
        return json.loads(text)

    def request(self, method: str, path: str, params=None, payload: Optional[dict] = None):
        url = self.endpoint(path)
        logger.debug('%s %s params=%s', method, url, params)
        try:
            rsp = self.session.request(method, url, params=params, json=payload)
        except requests.exceptions.RequestException as ex:
            raise gerry.ServerError('Unable to reach %s: %s' % (self.url, ex), url=url)
        if rsp.status_code >= 400:
            # Gerrit sends plain-text explanations along with errors
            message = rsp.text.strip() or rsp.reason or 'request failed'
            raise gerry.ServerError(message.splitlines()[0], url=url, status=rsp.status_code)
        try:
            return self.decode(rsp.text)
        except ValueError as ex:
            raise gerry.ServerError('Unparseable response from server: %s' % ex, url=url, status=rsp.status_code)

    def scope_query(self, query: str) -> str:
        if self.project:
            return 'project:%s %s' % (self.project, query)
        return query

    def query(self, query: str, limit: Optional[int] = None, scoped: bool = True) -> List[dict]:
        if limit is None:
            limit = self.limit
        if scoped:
            query = self.scope_query(query)
        results = list()
        while True:
            params = [('q', query), ('n', str(limit - len(results)))]
            if results:
                params.append(('start', str(len(results))))
            for opt in QUERY_OPTIONS:
                params.append(('o', opt))
            batch = self.request('GET', 'changes/', params=params)
            if not batch:
                break
            results += batch
            if not batch[-1].get('_more_changes') or len(results) >= limit:
                break
        logger.debug('Query "%s" returned %s changes', query, len(results))
        return results

    def query_many(self, queries: List[str], scoped: bool = True) -> List[List[dict]]:
        """Run independent read-only queries concurrently, keeping the order."""
        if len(queries) < 2:
            return [self.query(x, scoped=scoped) for x in queries]
        # Workers share self.session. Everything here is a GET that leaves no state on the
        # session besides pooled connections, and urllib3 pools are thread-safe.
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(self.query, x, None, scoped) for x in queries]
            return [x.result() for x in futures]

    def get_changes(self, ident: ChangeIdentity, only_open: bool = False) -> List[ChangeRef]:
        query = ident.as_query()
        if only_open:
            query += ' status:open'
        return [ChangeRef.from_json(x) for x in self.query(query)]

    def get_changes_by_ids(self, change_ids: List[str]) -> Dict[str, List[ChangeRef]]:
        queries = ['change:%s' % x for x in change_ids]
        found = dict()
        for change_id, results in zip(change_ids, self.query_many(queries)):
            found[change_id] = [ChangeRef.from_json(x) for x in results]
        return found

    def get_self(self) -> dict:
        if self._self_account is None:
            if not self.authenticated:
                raise gerry.UsageError('This requires credentials, set gerry-server.<name>.user')
            self._self_account = self.request('GET', 'accounts/self')
        return self._self_account

    def review(self, change: ChangeRef, message: Optional[str] = None,
               labels: Optional[Dict[str, int]] = None) -> None:
        payload = dict()
        if message:
            payload['message'] = message
        if labels:
            payload['labels'] = labels
        self.request('POST', 'changes/%s/revisions/current/review' % change.number, payload=payload)

    def submit(self, change: ChangeRef) -> None:
        data = self.request('POST', 'changes/%s/submit' % change.number, payload=dict())
        if data and data.get('status') not in ('MERGED', 'SUBMITTED', None):
            raise gerry.ServerError('Change %s was not merged (status: %s)' % (change.number, data.get('status')))

    def abandon(self, change: ChangeRef, message: Optional[str] = None) -> None:
        payload = dict()
        if message:
            payload['message'] = message
        self.request('POST', 'changes/%s/abandon' % change.number, payload=payload)

    def add_reviewer(self, change: ChangeRef, reviewer: str) -> None:
        data = self.request('POST', 'changes/%s/reviewers' % change.number, payload={'reviewer': reviewer})
        # Gerrit reports unknown accounts with a 200 and an error field
        if data and data.get('error'):
            raise gerry.ServerError(data['error'])

    def get_hook(self, name: str = 'commit-msg') -> bytes:
        # Hooks are served without authentication
        url = '/'.join((self.url, 'tools', 'hooks', name))
        logger.debug('GET %s', url)
        try:
            rsp = self.session.get(url)
            rsp.raise_for_status()
        except requests.exceptions.RequestException as ex:
            raise gerry.ServerError('Unable to download %s hook: %s' % (name, ex), url=url)
        return rsp.content


def get_project_from_remote(gitdir: Optional[str], remote: str) -> Optional[str]:
    lines = gerry.git_get_command_lines(gitdir, ['remote', 'get-url', remote])
    if not lines:
        return None
    url = lines[0]
    if re.search(r'^\w+://', url):
        path = urllib.parse.urlparse(url).path
    else:
        # scp-style: host:path
        path = url.split(':', 1)[-1]
    path = path.strip('/')
    # http remotes sometimes carry the /a/ prefix for authenticated access
    path = re.sub(r'^a/', '', path)
    path = re.sub(r'\.git$', '', path)
    return path or None


def get_server(ctx: gerry.ExecContext) -> GerritServer:
    servercfg = ctx.servercfg
    url = servercfg.get('url')
    if not url:
        raise gerry.UsageError('No server url configured, set gerry-server.%s.url' % ctx.servername)
    user = servercfg.get('user')
    password = servercfg.get('password')
    if user and not password:
        loc = urllib.parse.urlparse(url)
        password = gerry.git_credential_fill(ctx.gitdir, loc.scheme or 'https', loc.netloc, user)
    project = servercfg.get('project')
    if not project:
        project = get_project_from_remote(ctx.gitdir, ctx.remote)
    try:
        limit = int(ctx.config.get('query-limit', 100))
        workers = int(ctx.config.get('query-workers', 4))
    except ValueError:
        raise gerry.UsageError('gerry.query-limit and gerry.query-workers must be integers')
    logger.debug('Using server %s (project=%s, user=%s)', url, project, user)
    return GerritServer(url, project=project, user=user, password=password, limit=limit, workers=workers)
