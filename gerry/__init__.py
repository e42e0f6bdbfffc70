# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
import subprocess
import logging
import re
import os
import fnmatch
import pathlib
import copy
import datetime

import requests

from typing import Optional, Tuple, List, Dict, Sequence

__VERSION__ = '0.3.0'

logger = logging.getLogger('gerry')

CHANGEID_RE = re.compile(r'^Change-Id:[ \t]*(I[0-9a-f]{40})[ \t]*$', flags=re.M)
DURATION_RE = re.compile(r'(\d+)([ywdhms])')

DURATION_UNITS = {
    'y': 365 * 86400,
    'w': 7 * 86400,
    'd': 86400,
    'h': 3600,
    'm': 60,
    's': 1,
}

DEFAULT_CONFIG = {
    # Which gerry-server.<name>.* section to use
    'server': 'default',
    'remote': 'origin',
    # Used when creating new topics without an explicit upstream
    'default-branch': 'master',
    # Labels applied by "gerry ninja" before submitting
    'ninja-labels': 'Code-Review=+2',
    # Maximum number of changes returned by a single listing
    'query-limit': '100',
    # How many read-only server queries can be in flight at once
    'query-workers': '4',
    # Used by "gerry patches --oneline" when no --format is given
    'patches-format': '%n  %s',
}

# This is where we store actual config
MAIN_CONFIG = None

# Used for storing our requests session
REQSESSION = None


class GerryError(Exception):
    """Base class for all errors we know how to report."""
    kind = 'Error'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def get_details(self) -> List[str]:
        return list()


class RepositoryError(GerryError):
    kind = 'Git error'

    def __init__(self, message: str, cmd: Optional[Sequence[str]] = None, output: str = '', ecode: int = 1):
        super().__init__(message)
        self.cmd = list(cmd) if cmd else list()
        self.output = output
        self.ecode = ecode

    def get_details(self) -> List[str]:
        details = list()
        if self.cmd:
            details.append('Command: %s' % ' '.join(self.cmd))
        details.append('Exit code: %s' % self.ecode)
        if self.output.strip():
            details.append('Output: %s' % self.output.strip())
        return details


class ServerError(GerryError):
    kind = 'Server error'

    def __init__(self, message: str, url: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status

    def get_details(self) -> List[str]:
        details = list()
        if self.url:
            details.append('URL: %s' % self.url)
        if self.status:
            details.append('HTTP status: %s' % self.status)
        return details


class UsageError(GerryError):
    kind = 'Usage error'


class InvalidFilterError(UsageError):
    pass


class InvalidFormatError(UsageError):
    pass


class NoUpstreamError(UsageError):
    pass


class NotFoundError(UsageError):
    pass


class NameConflictError(UsageError):
    pass


class AmbiguousStateError(GerryError):
    kind = 'Ambiguous state'


class AmbiguousTopicError(AmbiguousStateError):
    pass


class MissingChangeIdError(AmbiguousStateError):
    pass


class StepResult:
    """Outcome of one mutating step of a multi-step command."""
    item: str
    ok: bool
    error: Optional[str] = None

    def __init__(self, item: str, ok: bool = True, error: Optional[str] = None):
        self.item = item
        self.ok = ok
        self.error = error

    def __repr__(self):
        if self.ok:
            return '%s: ok' % self.item
        return '%s: FAILED (%s)' % (self.item, self.error)


class PartialFailureError(GerryError):
    kind = 'Partial failure'

    def __init__(self, message: str, results: List[StepResult]):
        super().__init__(message)
        self.results = results

    def get_details(self) -> List[str]:
        return [repr(x) for x in self.results]


class ExecContext:
    """Everything a single invocation needs, built once in gerry.command.cmd()."""

    def __init__(self, gitdir: Optional[str] = None, config: Optional[dict] = None,
                 servername: Optional[str] = None, interactive: bool = True,
                 server=None, squads=None):
        self.gitdir = gitdir
        if config is None:
            config = get_main_config()
        self.config = config
        if servername is None:
            servername = config.get('server', 'default')
        self.servername = servername
        self.interactive = interactive
        self._server = server
        self._squads = squads
        self._servercfg = None

    @property
    def servercfg(self) -> dict:
        if self._servercfg is None:
            self._servercfg = get_server_config(self.servername, gitdir=self.gitdir)
        return self._servercfg

    @property
    def server(self):
        if self._server is None:
            import gerry.server
            self._server = gerry.server.get_server(self)
        return self._server

    @property
    def squads(self):
        if self._squads is None:
            import gerry.squad
            self._squads = gerry.squad.SquadRegistry(gerry.squad.get_squads_path(), self.servername)
        return self._squads

    @property
    def remote(self) -> str:
        return self.servercfg.get('remote', self.config.get('remote', 'origin'))


def report_results(results: List[StepResult], what: str) -> None:
    failed = [x for x in results if not x.ok]
    for result in results:
        if result.ok:
            logger.info('  %s: ok', result.item)
        else:
            logger.info('  %s: FAILED', result.item)
            logger.info('    %s', result.error)
    if failed:
        raise PartialFailureError('%s failed for %s of %s item(s)' % (what, len(failed), len(results)), results)


def _run_command(cmdargs: List[str], stdin: Optional[bytes] = None) -> Tuple[int, bytes, bytes]:
    logger.debug('Running %s', ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, stdout=subprocess.PIPE, stdin=subprocess.PIPE, stderr=subprocess.PIPE)
    (output, error) = sp.communicate(input=stdin)
    return sp.returncode, output, error


def get_git_cmdargs(gitdir: Optional[str], args: List[str]) -> List[str]:
    cmdargs = ['git', '--no-pager']
    if gitdir:
        if os.path.exists(os.path.join(gitdir, '.git')):
            gitdir = os.path.join(gitdir, '.git')
        cmdargs += ['--git-dir', gitdir]

    # counteract some potential local settings
    if args[0] == 'log':
        args = [args[0], '--no-abbrev-commit'] + args[1:]

    return cmdargs + args


def git_run_command(gitdir: Optional[str], args: List[str], stdin: Optional[bytes] = None,
                    logstderr: bool = False) -> Tuple[int, str]:
    ecode, out, err = _run_command(get_git_cmdargs(gitdir, args), stdin=stdin)
    out = out.decode(errors='replace')
    if logstderr and len(err.strip()):
        err = err.decode(errors='replace')
        logger.debug('Stderr: %s', err)
        out += err

    return ecode, out


def git_run_checked(gitdir: Optional[str], args: List[str], stdin: Optional[bytes] = None,
                    logstderr: bool = False) -> str:
    """Like git_run_command, but raises RepositoryError on a non-zero exit."""
    ecode, out, err = _run_command(get_git_cmdargs(gitdir, args), stdin=stdin)
    out = out.decode(errors='replace')
    err = err.decode(errors='replace')
    if ecode > 0:
        lines = [x for x in err.strip().splitlines() if x.strip()]
        summary = lines[-1] if lines else 'git %s failed' % args[0]
        raise RepositoryError(summary, cmd=['git'] + list(args), output=out + err, ecode=ecode)
    if err.strip():
        logger.debug('Stderr: %s', err)
        if logstderr:
            out += err
    return out


def git_get_command_lines(gitdir: Optional[str], args: list) -> List[str]:
    ecode, out = git_run_command(gitdir, args)
    lines = list()
    if out:
        for line in out.split('\n'):
            if line == '':
                continue
            lines.append(line)

    return lines


def git_get_repo_status(gitdir: Optional[str] = None, untracked: bool = False) -> List[str]:
    args = ['status', '--porcelain=v1']
    if not untracked:
        args.append('--untracked-files=no')
    return git_get_command_lines(gitdir, args)


def git_credential_fill(gitdir: Optional[str], protocol: str, host: str, username: str) -> Optional[str]:
    stdin = f'protocol={protocol}\nhost={host}\nusername={username}\n'.encode()
    ecode, out = git_run_command(gitdir, args=['credential', 'fill'], stdin=stdin)
    if ecode == 0:
        for line in out.splitlines():
            if not line.startswith('password='):
                continue
            chunks = line.split('=', maxsplit=1)
            return chunks[1]
    return None


def get_config_from_git(regexp: str, defaults: Optional[dict] = None,
                        multivals: Optional[list] = None, source: Optional[str] = None,
                        gitdir: Optional[str] = None) -> dict:
    if multivals is None:
        multivals = list()
    args = ['config']
    if source:
        args += ['--file', source]
    args += ['-z', '--get-regexp', regexp]
    ecode, out = git_run_command(gitdir, args)
    gitconfig = defaults
    if not gitconfig:
        gitconfig = dict()
    if not out:
        return gitconfig

    for line in out.split('\x00'):
        if not line:
            continue
        try:
            key, value = line.split('\n', 1)
        except ValueError:
            # Boolean-style entries with no value
            key, value = line, 'true'
        chunks = key.split('.')
        cfgkey = chunks[-1].lower()
        if cfgkey in multivals:
            if cfgkey not in gitconfig:
                gitconfig[cfgkey] = list()
            gitconfig[cfgkey].append(value)
        else:
            gitconfig[cfgkey] = value

    return gitconfig


def get_main_config() -> dict:
    global MAIN_CONFIG
    if MAIN_CONFIG is None:
        defcfg = copy.deepcopy(DEFAULT_CONFIG)
        # some options can be provided via the toplevel .gerry-config file,
        # so load them up and use as defaults
        topdir = git_get_toplevel()
        wtglobs = ['server', 'remote', 'default-branch', 'patches-format']
        if topdir:
            wtcfg = os.path.join(topdir, '.gerry-config')
            if os.access(wtcfg, os.R_OK):
                logger.debug('Loading worktree configs from %s', wtcfg)
                wtconfig = get_config_from_git(r'^gerry\..*', source=wtcfg)
                for key, val in wtconfig.items():
                    for wtglob in wtglobs:
                        if fnmatch.fnmatch(key, wtglob):
                            logger.debug('wtcfg: %s=%s', key, val)
                            defcfg[key] = val
                            break
        MAIN_CONFIG = get_config_from_git(r'^gerry\..*', defaults=defcfg)

    return MAIN_CONFIG


def regex_escape(value: str) -> str:
    # git config uses POSIX regexes, which choke on some of re.escape output
    return re.sub(r'([.\[\]()*+?^$|{}\\])', r'\\\1', value)


def get_server_config(name: str, gitdir: Optional[str] = None) -> dict:
    regexp = r'^gerry-server\.%s\..*' % regex_escape(name)
    return get_config_from_git(regexp, gitdir=gitdir)


def get_data_dir(appname: str = 'gerry') -> str:
    if 'XDG_DATA_HOME' in os.environ:
        datahome = os.environ['XDG_DATA_HOME']
    else:
        datahome = os.path.join(str(pathlib.Path.home()), '.local', 'share')
    datadir = os.path.join(datahome, appname)
    pathlib.Path(datadir).mkdir(parents=True, exist_ok=True)
    return datadir


def get_requests_session() -> requests.Session:
    global REQSESSION
    if REQSESSION is None:
        REQSESSION = requests.session()
        REQSESSION.headers.update({'User-Agent': 'gerry/%s' % __VERSION__})
    return REQSESSION


def git_get_toplevel(path: Optional[str] = None) -> Optional[str]:
    topdir = None
    # Are we in a git tree and if so, what is our toplevel?
    gitargs = ['rev-parse', '--show-toplevel']
    lines = git_get_command_lines(path, gitargs)
    if len(lines) == 1:
        topdir = lines[0]
    return topdir


def git_get_current_branch(gitdir: Optional[str] = None, short: bool = True) -> Optional[str]:
    gitargs = ['symbolic-ref', '-q', 'HEAD']
    ecode, out = git_run_command(gitdir, gitargs)
    if ecode > 0:
        logger.debug('Not able to get current branch (git symbolic-ref HEAD)')
        return None
    mybranch = out.strip()
    if short:
        return re.sub(r'^refs/heads/', '', mybranch)
    return mybranch


def git_branch_exists(gitdir: Optional[str], branch: str) -> bool:
    gitargs = ['rev-parse', '--verify', '--quiet', f'refs/heads/{branch}']
    ecode, out = git_run_command(gitdir, gitargs)
    return ecode == 0


def parse_duration(spec: str) -> datetime.timedelta:
    """Turn strings like "2w3d5h" into a timedelta."""
    cleaned = re.sub(r'\s', '', spec.lower())
    if not cleaned or DURATION_RE.sub('', cleaned):
        raise UsageError('Invalid duration: %s (expected something like 2w3d5h)' % spec)
    seconds = 0
    for amount, unit in DURATION_RE.findall(cleaned):
        seconds += int(amount) * DURATION_UNITS[unit]
    return datetime.timedelta(seconds=seconds)


def format_age(delta: datetime.timedelta) -> str:
    seconds = max(int(delta.total_seconds()), 0)
    for unit in ('y', 'w', 'd', 'h', 'm'):
        if seconds >= DURATION_UNITS[unit]:
            return '%d%s' % (seconds // DURATION_UNITS[unit], unit)
    return '%ds' % seconds


def parse_labels(labels: str) -> Dict[str, int]:
    """Parse "Code-Review=+2,Verified=+1" into a dict."""
    parsed = dict()
    for chunk in labels.split(','):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, value = chunk.partition('=')
        try:
            parsed[name.strip()] = int(value)
        except ValueError:
            raise UsageError('Invalid label specification: %s' % chunk)
    return parsed
