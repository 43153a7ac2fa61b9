import pytest

import remove_profiles
import uptools
from conftest import make_profile
from profile_engine import DeletionError, TransportError

HOSTS = {
    "winhost01": [make_profile("Administrator"), make_profile("JasonT", days_unused=40),
                  make_profile("JasonB", days_unused=3), make_profile("JasonL", loaded=True)],
    "winhost02": [make_profile("JasonT", days_unused=90)],
}


@pytest.fixture
def fake_hosts(monkeypatch):
    """Replace the CIM calls. Returns the list of (host, name) of deleted profiles."""
    deleted = []

    def listuserprofiles(self, host, special=False):
        if host not in HOSTS:
            raise TransportError(f"WinRM cannot complete the operation on {host}")
        return HOSTS[host]

    def removeuserprofile(self, host, profile):
        if host == "winhost02":
            raise DeletionError("The process cannot access the file because it is being used by another process.")
        deleted.append((host, profile.path))

    monkeypatch.setattr(uptools.UPTools, "cim_listuserprofiles", listuserprofiles)
    monkeypatch.setattr(uptools.UPTools, "cim_removeuserprofile", removeuserprofile)
    return deleted


def run_main(argv):
    with pytest.raises(SystemExit) as exc:
        remove_profiles.main(argv)
    return exc.value.code


def test_get_hosts():
    assert remove_profiles.get_hosts(["winhost01", "winhost02,winhost03", " WINHOST01 "]) == [
        "winhost01", "winhost02", "winhost03"]


def test_get_hosts_default_local(monkeypatch):
    monkeypatch.setattr(remove_profiles, "getfqdn", lambda: "winhost05.example.com")
    assert remove_profiles.get_hosts(None) == ["winhost05.example.com"]


@pytest.mark.parametrize(
    "answer,expected",
    [("y", True), ("YES", True), (" y ", True), ("n", False), ("", False), ("yep", False)],
)
def test_ask_confirmation(monkeypatch, answer, expected):
    monkeypatch.setattr("builtins.input", lambda prompt: answer)
    assert remove_profiles.ask_confirmation("JasonT") is expected


def test_ask_confirmation_eof(monkeypatch):
    def no_input(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", no_input)
    assert remove_profiles.ask_confirmation("JasonT") is False


def test_main_deletes_inactive_profiles(config_file, fake_hosts, caplog):
    code = run_main(["-n", "Jason*", "-i", "30", "-s", "winhost01", "-f"])
    assert code == 0
    assert fake_hosts == [("winhost01", "C:\\Users\\JasonT")]
    assert "winhost01: Profile JasonB skipped: not inactive long enough" in caplog.text
    assert "winhost01: Profile JasonL skipped: in use" in caplog.text
    assert "Profiles deleted: 1" in caplog.text


def test_main_failed_deletion_gives_error(config_file, fake_hosts, caplog):
    code = run_main(["-n", "JasonT", "-s", "winhost01,winhost02", "-f"])
    assert code == 1
    assert fake_hosts == [("winhost01", "C:\\Users\\JasonT")]
    assert "Unable to delete profile JasonT on host winhost02" in caplog.text
    assert "failed: 1" in caplog.text


def test_main_continues_after_unreachable_host(config_file, fake_hosts, caplog):
    code = run_main(["-n", "JasonT", "-s", "winhost09", "-s", "winhost01", "-f"])
    assert code == 1
    assert fake_hosts == [("winhost01", "C:\\Users\\JasonT")]
    assert "Unable to get the profiles of host winhost09" in caplog.text
    assert "Hosts: 2 (1 failed)" in caplog.text


def test_main_abort_on_error(config_file, fake_hosts, caplog):
    code = run_main(["-n", "JasonT", "-s", "winhost09", "-s", "winhost01", "-f", "--abort-on-error"])
    assert code == 1
    assert fake_hosts == []
    assert "Stopping after fetch error" in caplog.text


def test_main_fetch_warning_only(config_file, fake_hosts, caplog):
    with open(config_file, "a") as cfg:
        cfg.write("error_handling:\n  fetch: warning\n")
    code = run_main(["-n", "JasonT", "-s", "winhost09", "-s", "winhost01", "-f"])
    assert code == 0
    assert fake_hosts == [("winhost01", "C:\\Users\\JasonT")]


def test_main_no_match(config_file, fake_hosts, caplog):
    code = run_main(["-n", "Bob", "-s", "winhost01", "-f"])
    assert code == 0
    assert "No profiles matched the criteria on host winhost01" in caplog.text


def test_main_list_only(config_file, fake_hosts, caplog):
    code = run_main(["-n", "*", "-e", "Admin*", "-s", "winhost01", "--list"])
    assert code == 0
    assert fake_hosts == []
    assert "winhost01: Profile JasonT would be deleted" in caplog.text
    assert "winhost01: Profile Administrator skipped: excluded" in caplog.text


def test_main_asks_confirmation(config_file, fake_hosts, monkeypatch, caplog):
    asked = []

    def answer(prompt):
        asked.append(prompt)
        return "n"

    monkeypatch.setattr("builtins.input", answer)
    code = run_main(["-n", "JasonT", "-s", "winhost01"])
    assert code == 0
    assert asked == ["Delete profile JasonT? (y/N) "]
    assert fake_hosts == []
    assert "winhost01: Profile JasonT skipped: not confirmed" in caplog.text


def test_main_name_is_mandatory(config_file, fake_hosts, caplog):
    assert run_main(["-s", "winhost01"]) == 1
    assert "The option --name is mandatory" in caplog.text


def test_main_negative_inactive_days(config_file, fake_hosts, caplog):
    assert run_main(["-n", "JasonT", "-i", "-5"]) == 1
    assert fake_hosts == []
    assert "0 or more" in caplog.text
