#!/usr/bin/env python3
#
# profile_engine.py
#
# (c) 2026 SUSE Linux GmbH, Germany.
# GNU Public License. No warranty. No Support
#
# Version: 2026-10-18
#
# Description: Selection and deletion logic for user profiles. Decides per profile
#              if it has to be deleted and records what happened with it.
#
# Releases:
# 2026-10-18 - initial release.
#
# coding: utf-8

"""
This library contains the decision logic used by remove_profiles.py.

Nothing in here talks to a host. Fetching and deleting profiles and asking the
user for confirmation are passed in as callables.
"""
import collections
import enum
import logging
import re

log = logging.getLogger(__name__)

WILDCARD = "*"


class UPToolsError(Exception):
    """
    Base class for all errors of the userprofile tools.
    """


class ConfigError(UPToolsError):
    """
    Invalid criteria or configuration. Raised before any host is touched.
    """


class TransportError(UPToolsError):
    """
    The profiles of a host could not be retrieved.
    """


class DeletionError(UPToolsError):
    """
    A single profile could not be deleted.
    """


class Outcome(enum.Enum):
    DELETED = "Deleted"
    SKIPPED_EXCLUDED = "SkippedExcluded"
    SKIPPED_BELOW_INACTIVITY_THRESHOLD = "SkippedBelowInactivityThreshold"
    SKIPPED_IN_USE = "SkippedInUse"
    SKIPPED_NOT_CONFIRMED = "SkippedNotConfirmed"
    WOULD_DELETE = "WouldDelete"
    FAILED = "Failed"


ProfileRecord = collections.namedtuple("ProfileRecord", ["path", "sid", "loaded", "last_use_time", "special"])

ProfileResult = collections.namedtuple("ProfileResult", ["profile", "outcome", "reason"])


_CriteriaFields = collections.namedtuple("Criteria", ["name_pattern", "exclude_pattern", "inactive_days", "special",
                                                   "force", "dry_run"])


class Criteria(_CriteriaFields):
    """
    Filter criteria for one run. Validated on creation and read-only afterwards.
    """
    __slots__ = ()

    def __new__(cls, name_pattern, exclude_pattern="", inactive_days=None, special=False, force=False,
                dry_run=False):
        if not name_pattern or not name_pattern.strip():
            raise ConfigError("A profile name or pattern is required.")
        if inactive_days is not None:
            try:
                inactive_days = int(inactive_days)
            except (TypeError, ValueError):
                raise ConfigError(f"Number of inactive days '{inactive_days}' is not a number.")
            if inactive_days < 0:
                raise ConfigError(f"Number of inactive days should be 0 or more, not {inactive_days}.")
        return super().__new__(cls, name_pattern.strip(), (exclude_pattern or "").strip(), inactive_days,
                               bool(special), bool(force), bool(dry_run))


class HostReport:
    """
    Result of the run for one host.

    :param host: name of the host as given by the caller
    """

    def __init__(self, host):
        self.host = host
        self.results = []
        self.matched = 0
        self.fetch_error = None

    @property
    def fetch_failed(self):
        return self.fetch_error is not None

    @property
    def no_match(self):
        """
        True when the profiles were fetched but none of them became a delete candidate.
        """
        return not self.fetch_failed and self.matched == 0

    def count(self, outcome):
        return len([r for r in self.results if r.outcome == outcome])


def display_name(path):
    """
    Return the last segment of a Windows profile path.

    C:\\Users\\JasonT gives JasonT. Forward slashes and trailing separators are accepted.
    """
    if not path:
        return ""
    segments = [s for s in re.split(r"[\\/]", path) if s]
    if not segments:
        return ""
    return segments[-1]


def _pattern_to_regex(pattern):
    return re.compile(".*".join(re.escape(part) for part in pattern.split(WILDCARD)),
                      re.IGNORECASE | re.DOTALL)


def matches(candidate, pattern):
    """
    Check if a profile name matches the given pattern.

    Without a wildcard the names have to be equal. With one or more * every * matches zero
    or more characters. The comparison is case-insensitive.

    :param candidate: name of the profile
    :type candidate: str
    :param pattern: name or pattern to compare with
    :type pattern: str
    :return: True when the name matches
    :rtype: bool
    """
    if WILDCARD not in pattern:
        return candidate.casefold() == pattern.casefold()
    return _pattern_to_regex(pattern).fullmatch(candidate) is not None


def unused_days(loaded, last_use_time, now):
    """
    Number of whole days a profile has not been used.

    A loaded profile is in use, so 0 is returned. The same goes for a profile without a
    last use time.
    """
    if loaded or last_use_time is None:
        return 0
    return int((now - last_use_time).total_seconds() / 86400)


def run(profiles, criteria, now, confirm, delete, report=None):
    """
    Select the profiles to delete and delete them.

    :param profiles: profile records of one host, in the order they have been received
    :type profiles: list[ProfileRecord]
    :param criteria: the filter criteria
    :type criteria: Criteria
    :param now: moment to calculate the inactivity against
    :type now: datetime.datetime
    :param confirm: called with the profile name when force is not set. Returns True to delete.
    :param delete: called with the profile record. Raises DeletionError when it fails.
    :param report: HostReport to fill. A new one without host is created when not given.
    :return: the filled report
    :rtype: HostReport
    """
    if report is None:
        report = HostReport(None)
    for profile in profiles:
        name = display_name(profile.path)
        if not matches(name, criteria.name_pattern):
            continue
        if criteria.exclude_pattern and matches(name, criteria.exclude_pattern):
            report.results.append(ProfileResult(profile, Outcome.SKIPPED_EXCLUDED, None))
            continue
        if criteria.inactive_days is not None and not profile.loaded:
            days = unused_days(profile.loaded, profile.last_use_time, now)
            if days <= criteria.inactive_days:
                log.debug(f"Profile {name} unused for {days} days, threshold is {criteria.inactive_days}")
                report.results.append(ProfileResult(profile, Outcome.SKIPPED_BELOW_INACTIVITY_THRESHOLD, None))
                continue
        report.matched += 1
        if profile.loaded:
            report.results.append(ProfileResult(profile, Outcome.SKIPPED_IN_USE, None))
            continue
        if criteria.dry_run:
            report.results.append(ProfileResult(profile, Outcome.WOULD_DELETE, None))
            continue
        if not criteria.force and not confirm(name):
            report.results.append(ProfileResult(profile, Outcome.SKIPPED_NOT_CONFIRMED, None))
            continue
        try:
            delete(profile)
        except DeletionError as err:
            report.results.append(ProfileResult(profile, Outcome.FAILED, str(err)))
            continue
        report.results.append(ProfileResult(profile, Outcome.DELETED, None))
    return report


def process_hosts(hosts, fetch, criteria, now, confirm, delete, sink=None, abort_on_fetch_error=False):
    """
    Run the selection for every host. Every host gets its own snapshot of profiles.

    A host of which the profiles can't be fetched is reported and the next host is processed,
    unless abort_on_fetch_error is set. Then the TransportError is raised after the report of
    that host has been passed to the sink.

    :param hosts: names of the hosts
    :param fetch: called with host and special flag, returns the profile records
    :param delete: called with host and profile record
    :param sink: called with every HostReport as soon as the host is done
    :return: list of HostReport, in the order of hosts
    """
    reports = []
    for host in hosts:
        report = HostReport(host)
        reports.append(report)
        try:
            profiles = fetch(host, criteria.special)
        except TransportError as err:
            report.fetch_error = str(err)
            if sink:
                sink(report)
            if abort_on_fetch_error:
                raise
            continue
        log.debug(f"Received {len(profiles)} profiles from {host}")
        run(profiles, criteria, now, confirm, lambda profile, host=host: delete(host, profile), report)
        if sink:
            sink(report)
    return reports
