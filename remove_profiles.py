#!/usr/bin/env python3
#
# remove_profiles
#
# (c) 2026 SUSE Linux GmbH, Germany.
# GNU Public License. No warranty. No Support
#
# Version: 2026-10-18
#
# This script will perform the following actions:
# - Read the user profiles of the given Windows hosts (default the local host)
# - Select the profiles matching the name and not matching the exclude pattern
# - Optional only select the profiles not used for more than the given number of days
# - Delete the selected profiles that are not in use, after confirmation unless --force is given
#
# Releases:
# 2026-10-18 - Initial release
#

"""
This script will delete Windows user profiles.
"""

import argparse
import datetime
import sys
from argparse import RawTextHelpFormatter
from socket import getfqdn

import profile_engine
import uptools

upt = None

OUTCOME_MESSAGES = {
    profile_engine.Outcome.DELETED: "Profile {name} deleted",
    profile_engine.Outcome.SKIPPED_EXCLUDED: "Profile {name} skipped: excluded",
    profile_engine.Outcome.SKIPPED_BELOW_INACTIVITY_THRESHOLD: "Profile {name} skipped: not inactive long enough",
    profile_engine.Outcome.SKIPPED_IN_USE: "Profile {name} skipped: in use",
    profile_engine.Outcome.SKIPPED_NOT_CONFIRMED: "Profile {name} skipped: not confirmed",
    profile_engine.Outcome.WOULD_DELETE: "Profile {name} would be deleted",
}


def ask_confirmation(name):
    """
    Ask the user if the profile has to be deleted. Only y or yes confirms.

    :param name: name of the profile
    :type name: str
    :return: True when the user confirmed
    :rtype: bool
    """
    try:
        answer = input(f"Delete profile {name}? (y/N) ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def get_hosts(servers):
    """
    Build the list of hosts from the --server options. Each option may contain a comma separated
    list. Without hosts the local host is used.

    :param servers: values given with --server
    :type servers: list[str] or None
    :return: list of host names, without duplicates, in the given order
    :rtype: list[str]
    """
    hosts = []
    for server in servers or []:
        for host in server.split(","):
            host = host.strip()
            if host and host.lower() not in [h.lower() for h in hosts]:
                hosts.append(host)
    if not hosts:
        hosts.append(getfqdn())
    return hosts


def report_host(report):
    """
    Log the outcome of every profile of a host.

    :param report: the result of one host
    :type report: profile_engine.HostReport
    """
    if report.fetch_failed:
        upt.error_handling('fetch', f"Unable to get the profiles of host {report.host}: {report.fetch_error}")
        return
    for result in report.results:
        name = profile_engine.display_name(result.profile.path)
        if result.outcome == profile_engine.Outcome.FAILED:
            upt.minor_error(f"Unable to delete profile {name} on host {report.host}: {result.reason}")
        else:
            upt.log_info(f"{report.host}: " + OUTCOME_MESSAGES[result.outcome].format(name=name))
    if report.no_match:
        upt.log_info(f"No profiles matched the criteria on host {report.host}")


def report_summary(reports):
    """
    Log the totals of all hosts.
    """
    outcomes = profile_engine.Outcome
    deleted = sum(r.count(outcomes.DELETED) for r in reports)
    would_delete = sum(r.count(outcomes.WOULD_DELETE) for r in reports)
    failed = sum(r.count(outcomes.FAILED) for r in reports)
    skipped = sum(len(r.results) for r in reports) - deleted - would_delete - failed
    unreachable = len([r for r in reports if r.fetch_failed])
    upt.log_info(f"Hosts: {len(reports)} ({unreachable} failed). Profiles deleted: {deleted}, "
                 f"would be deleted: {would_delete}, skipped: {skipped}, failed: {failed}")


def start_remove_profiles(args, criteria, now=None):
    """
    Starts the removal of the profiles on all given hosts.

    :param args: the parsed command line
    :type args: Namespace
    :param criteria: the filter criteria
    :type criteria: profile_engine.Criteria
    :param now: moment to calculate the inactivity against. Default the current time.
    :return: list of HostReport
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    hosts = get_hosts(args.server)
    upt.log_debug(f"Hosts: {hosts}")
    upt.log_debug(criteria)
    abort = args.abort_on_error or str(upt.config['error_handling'].get('fetch', '')).lower() == "fatal"
    try:
        reports = profile_engine.process_hosts(hosts, upt.cim_listuserprofiles, criteria, now, ask_confirmation,
                                               upt.cim_removeuserprofile, sink=report_host,
                                               abort_on_fetch_error=abort)
    except profile_engine.TransportError as err:
        upt.fatal_error(f"Stopping after fetch error: {err}")
    report_summary(reports)
    return reports


def get_parser():
    parser = argparse.ArgumentParser(formatter_class=RawTextHelpFormatter, description=('''\
        Usage:
        remove_profiles.py -n <name or pattern> [-e <exclude pattern>] [-i <days>] [-s <host>] [--special] [-f] [-l]
            '''))
    parser.add_argument("-n", "--name", help="name of the profile to be deleted. * can be used as wildcard. Required")
    parser.add_argument("-e", "--exclude", default="", help="profiles matching this name or pattern are not deleted.")
    parser.add_argument("-i", "--inactive", type=int,
                        help="only delete profiles not used for more than this number of days.")
    parser.add_argument("-s", "--server", action="append",
                        help="host to delete the profiles on. Can be given more than once or comma separated.\n"
                             "Default the local host.")
    parser.add_argument("--special", action="store_true", default=False,
                        help="work on the special (system and service) profiles instead of the user profiles.")
    parser.add_argument("-f", "--force", action="store_true", default=False,
                        help="delete without asking for confirmation.")
    parser.add_argument("-l", "--list", action="store_true", default=False,
                        help="only show which profiles would be deleted.")
    parser.add_argument("--abort-on-error", action="store_true", default=False,
                        help="stop when the profiles of a host can't be retrieved.")
    parser.add_argument('--version', action='version', version='%(prog)s 1.0.0, October 18, 2026')
    return parser


def main(argv=None):
    """
    Main function
    """
    global upt
    args = get_parser().parse_args(argv)
    upt = uptools.UPTools("remove_profiles")
    if not args.name:
        upt.log_error("The option --name is mandatory. Exiting script")
        upt.close_program(1)
    try:
        criteria = profile_engine.Criteria(args.name, args.exclude, args.inactive, args.special, args.force,
                                           args.list)
    except profile_engine.ConfigError as err:
        upt.fatal_error(str(err))
    upt.log_info("Start")
    upt.log_debug("The following arguments are set: ")
    upt.log_debug(args)
    start_remove_profiles(args, criteria)
    if upt.error_found:
        upt.log_error("Finished with errors")
    else:
        upt.log_info("Finished successfully")
    upt.close_program()


if __name__ == "__main__":
    sys.exit(main())
