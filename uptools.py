#!/usr/bin/env python3
#
# Script: uptools.py
#
# (c) 2026 SUSE Linux GmbH, Germany.
# GNU Public License. No warranty. No Support
#
# Version: 2026-10-18
#
# Description: This script contains standard functions for the userprofile scripts: configuration,
#              logging, error handling and the calls to the CIM interface of Windows hosts.
#
# Releases:
# 2026-10-18 - initial release.
#
# coding: utf-8

"""
This library contains functions used in other modules
"""
import base64
import copy
import datetime
import json
import logging
import os
import re
import smtplib
import socket
import subprocess
import sys
from email.mime.text import MIMEText

import yaml

from profile_engine import ConfigError, DeletionError, ProfileRecord, TransportError

CONFIG_ENV = "UPTOOLS_CONFIG"
CONFIG_FILE = "configup.yaml"

DEFAULT_CONFIG = {
    'dirs': {'log_dir': '/var/log/uptools'},
    'loglevel': {'file': 'debug', 'screen': 'info'},
    'smtp': {'sendmail': False, 'server': 'localhost', 'sender': 'uptools@localhost', 'receivers': []},
    'powershell': {'executable': 'powershell', 'timeout': 120},
    'error_handling': {'fetch': 'error'},
}

LOCAL_HOSTS = ("", ".", "localhost", "127.0.0.1", "::1")

SID_REGEX = re.compile(r"^S-1(-\d+)+$", re.IGNORECASE)

LAST_USE_FORMAT = "%Y-%m-%d %H:%M:%SZ"

PS_PREAMBLE = "[Console]::OutputEncoding = [Text.Encoding]::UTF8; $ErrorActionPreference = 'Stop'; "


def load_yaml(stream):
    """
    Load YAML data.
    """
    loader = yaml.Loader(stream)
    try:
        return loader.get_single_data()
    finally:
        loader.dispose()


def merge_config(defaults, values):
    """
    Return a copy of defaults updated with the given values. Sections are merged key by key.
    """
    result = copy.deepcopy(defaults)
    for key, value in (values or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = value
    return result


def config_path():
    """
    Location of the configuration file: UPTOOLS_CONFIG or configup.yaml next to this file.
    """
    return os.environ.get(CONFIG_ENV) or os.path.join(os.path.dirname(os.path.abspath(__file__)), CONFIG_FILE)


def load_config(path=None):
    """
    Read the configuration file and complete it with the defaults.

    :param path: file to read. If not given config_path() is used.
    :raises ConfigError: the file doesn't contain a YAML mapping
    """
    if not path:
        path = config_path()
    with open(path) as h_cfg:
        try:
            values = load_yaml(h_cfg)
        except yaml.YAMLError as err:
            raise ConfigError(f"Unable to parse {path}: {err}")
    if values is None:
        values = {}
    if not isinstance(values, dict):
        raise ConfigError(f"{path} should contain a mapping of settings.")
    return merge_config(DEFAULT_CONFIG, values)


def get_config():
    """
    Load the configuration. Stops the program when the file doesn't exist.
    """
    path = config_path()
    if not os.path.isfile(path):
        print(f"ERROR: {path} doesn't exist. Please create file")
        sys.exit(1)
    try:
        return load_config(path)
    except ConfigError as err:
        print(f"ERROR: {err}")
        sys.exit(1)


def is_local_host(host):
    """
    Check if the given host is the machine this program is running on.
    """
    name = (host or "").strip().lower()
    if name in LOCAL_HOSTS:
        return True
    return name in (socket.gethostname().lower(), socket.getfqdn().lower())


def ps_quote(value):
    """
    Quote a value as PowerShell single quoted string.
    """
    return "'" + str(value).replace("'", "''") + "'"


def parse_last_use_time(value):
    """
    Convert the LastUseTime as written by the list command to an aware datetime (UTC).
    """
    if not value:
        return None
    if not isinstance(value, str):
        raise ValueError(f"unexpected LastUseTime {value!r}")
    return datetime.datetime.strptime(value, LAST_USE_FORMAT).replace(tzinfo=datetime.timezone.utc)


def parse_profiles(output):
    """
    Convert the JSON output of Win32_UserProfile to a list of ProfileRecord.

    ConvertTo-Json writes a single object instead of a list when there is only one profile and
    nothing at all when there are none.
    """
    if not output or not output.strip():
        return []
    data = json.loads(output)
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise ValueError(f"expected a list of profiles, got {type(data).__name__}")
    profiles = []
    for item in data:
        if not isinstance(item, dict):
            raise ValueError(f"expected a profile object, got {type(item).__name__}")
        profiles.append(ProfileRecord(path=str(item.get('LocalPath') or ""),
                                      sid=str(item.get('SID') or ""),
                                      loaded=bool(item.get('Loaded')),
                                      last_use_time=parse_last_use_time(item.get('LastUseTime')),
                                      special=bool(item.get('Special'))))
    return profiles


class UPTools:
    """
    Class to define needed tools.
    """
    error_text = ""
    error_found = False
    hostname = ""
    program = "uptools"

    def __init__(self, program, hostname="", config=None):
        """
        Constructor
        LOGLEVELS:
        DEBUG: info warning error debug
        INFO: info warning error
        WARNING: warning error
        ERROR: error
        """
        self.hostname = hostname
        self.program = program
        self.error_text = ""
        self.error_found = False
        if config is None:
            config = get_config()
        self.config = config
        log_dir = self.config['dirs']['log_dir']
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)
        log_name = os.path.join(log_dir, self.program + ".log")

        formatter = logging.Formatter('%(asctime)s |  {} | %(levelname)s | %(message)s'.format(self.program),
                                      '%d-%m-%Y %H:%M:%S')

        fh = logging.FileHandler(log_name, 'a')
        fh.setLevel(self.config['loglevel']['file'].upper())
        fh.setFormatter(formatter)

        console = logging.StreamHandler()
        console.setLevel(self.config['loglevel']['screen'].upper())
        console.setFormatter(formatter)

        self.log = logging.getLogger(self.program)
        for handler in list(self.log.handlers):
            self.log.removeHandler(handler)
            handler.close()
        self.log.setLevel(logging.DEBUG)
        self.log.addHandler(console)
        self.log.addHandler(fh)

    def minor_error(self, errtxt):
        """
        Print minor error.
        """
        self.error_text += errtxt
        self.error_text += "\n"
        self.error_found = True
        self.log_error(errtxt)

    def fatal_error(self, errtxt, return_code=1):
        """
        log fatal error and exit program
        """
        self.error_text += errtxt
        self.error_text += "\n"
        self.error_found = True
        self.log_error("{}".format(errtxt))
        self.close_program(return_code)

    def log_info(self, errtxt):
        """
        Log info text
        """
        self.log.info("{}".format(errtxt))

    def log_error(self, errtxt):
        """
        Log error text
        """
        self.log.error("{}".format(errtxt))

    def log_warning(self, errtxt):
        """
        Log warning text
        """
        self.log.warning("{}".format(errtxt))

    def log_debug(self, errtxt):
        """
        Log debug text
        :param errtxt :
        :return:
        """
        self.log.debug("{}".format(errtxt))

    def send_mail(self):
        """
        Send Mail.
        """
        script = os.path.basename(sys.argv[0])
        try:
            smtp_connection = smtplib.SMTP(self.config['smtp']['server'])
        except (OSError, smtplib.SMTPException):
            self.log_error("error when sending mail")
            return
        datenow = datetime.datetime.now()
        txt = ("Dear admin,\n\nThe job {} has run today at {}.".format(script, datenow))
        txt += "\n\nUnfortunately there have been some error\n\nPlease see the following list:\n"
        txt += self.error_text
        msg = MIMEText(txt)
        sender = self.config['smtp']['sender']
        recipients = self.config['smtp']['receivers']
        msg['Subject'] = ("[{}] on server {} from {} has errors".format(script, socket.getfqdn(), datenow))
        msg['From'] = sender
        msg['To'] = ", ".join(recipients)
        try:
            smtp_connection.sendmail(sender, recipients, msg.as_string())
        except smtplib.SMTPException:
            self.log.error("sending mail failed")
        finally:
            smtp_connection.quit()

    def close_program(self, return_code=0):
        """Close program and send mail if there is an error"""
        self.log_info("Finished")
        if self.error_found:
            if self.config['smtp']['sendmail']:
                self.send_mail()
            if return_code == 0:
                sys.exit(1)
        sys.exit(return_code)

    def error_handling(self, err_type, message):
        """
        Handle an error as configured in error_handling: fatal, error or warning.
        """
        level = str(self.config['error_handling'].get(err_type, "fatal")).lower()
        if level == "error":
            self.minor_error(message)
            return
        elif level == "warning":
            self.log_warning(message)
            return
        elif level == "fatal":
            self.fatal_error(message)
        else:
            message += "\nWrong option given {}. Should be fatal, error or warning. Assuming fatal".format(level)
            self.fatal_error(message)

    """
    Calls to the CIM interface
    """

    def _run_powershell(self, command, error_class):
        """
        Run a PowerShell command and return its output.

        The command is passed encoded, so quoting is left to PowerShell itself.

        :raises error_class: the command couldn't be started, took too long or ended with an error
        """
        executable = self.config['powershell']['executable']
        timeout = self.config['powershell']['timeout']
        encoded = base64.b64encode(command.encode("utf-16-le")).decode("ascii")
        try:
            result = subprocess.run([executable, "-NoProfile", "-NonInteractive", "-EncodedCommand", encoded],
                                    capture_output=True, encoding="utf-8", errors="replace",
                                    timeout=timeout)
        except FileNotFoundError:
            raise error_class(f"PowerShell executable {executable} not found")
        except subprocess.TimeoutExpired:
            raise error_class(f"No answer within {timeout} seconds")
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise error_class(message or f"PowerShell ended with return code {result.returncode}")
        return result.stdout

    def cim_listuserprofiles(self, host, special=False):
        """
        Get the user profiles of a host from Win32_UserProfile.

        :param host: host to ask. For the local host no connection is made.
        :param special: True for the system and service profiles, False for the normal users
        :return: list of ProfileRecord, in the order Windows returns them
        :rtype: list[ProfileRecord]
        :raises TransportError: the profiles couldn't be retrieved
        """
        command = PS_PREAMBLE + "Get-CimInstance -ClassName Win32_UserProfile"
        if not is_local_host(host):
            command += " -ComputerName " + ps_quote(host)
        command += " -Filter " + ps_quote("Special = " + ("TRUE" if special else "FALSE"))
        command += (" | Select-Object LocalPath, SID, Loaded, Special,"
                    " @{Name='LastUseTime'; Expression={if ($_.LastUseTime)"
                    " {$_.LastUseTime.ToUniversalTime().ToString('u')}}}"
                    " | ConvertTo-Json -Compress")
        try:
            output = self._run_powershell(command, TransportError)
            profiles = parse_profiles(output)
        except (TransportError, ValueError) as err:
            self.log_debug('api-call: Win32_UserProfile list')
            self.log_debug('Value passed: ')
            self.log_debug('  host:     {}'.format(host))
            self.log_debug('  special:  {}'.format(special))
            self.log_debug("Error: \n{}".format(err))
            raise TransportError(f"Unable to get the profiles of {host}: {err}") from err
        return profiles

    def cim_removeuserprofile(self, host, profile):
        """
        Delete a user profile: the folder and the registry entries of it.

        :param host: host the profile belongs to
        :param profile: the profile to delete
        :type profile: ProfileRecord
        :raises DeletionError: the profile couldn't be deleted
        """
        if not SID_REGEX.match(profile.sid or ""):
            raise DeletionError(f"Invalid security identifier '{profile.sid}'")
        command = PS_PREAMBLE + "$userProfile = Get-CimInstance -ClassName Win32_UserProfile"
        if not is_local_host(host):
            command += " -ComputerName " + ps_quote(host)
        command += " -Filter " + ps_quote("SID = '" + profile.sid + "'")
        command += ("; if (-not $userProfile) { throw 'Profile not found' }"
                    "; $userProfile | Remove-CimInstance -ErrorAction Stop")
        try:
            self._run_powershell(command, DeletionError)
        except DeletionError as err:
            self.log_debug('api-call: Win32_UserProfile remove')
            self.log_debug('Value passed: ')
            self.log_debug('  host:     {}'.format(host))
            self.log_debug('  sid:      {}'.format(profile.sid))
            self.log_debug('  path:     {}'.format(profile.path))
            self.log_debug("Error: \n{}".format(err))
            raise
