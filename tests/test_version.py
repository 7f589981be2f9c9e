"""Tests for the package version lookup."""

import subprocess
from importlib.metadata import PackageNotFoundError

import shellyrpc


def not_installed(name):
    raise PackageNotFoundError(name)


def test_installed_metadata_wins(monkeypatch):
    def git_describe(*args, **kwargs):
        raise AssertionError("git must not be consulted for an installed package")

    monkeypatch.setattr(shellyrpc, "version", lambda name: "1.2.3")
    monkeypatch.setattr(shellyrpc.subprocess, "run", git_describe)
    assert shellyrpc._get_version() == "1.2.3"


def test_git_describe_fallback(monkeypatch):
    monkeypatch.setattr(shellyrpc, "version", not_installed)
    monkeypatch.setattr(shellyrpc.subprocess, "run", lambda *a, **kw: subprocess.CompletedProcess(
        a, 0, stdout="v0.3.0-2-gabc1234\n", stderr=""))
    assert shellyrpc._get_version() == "0.3.0-2-gabc1234"


def test_no_metadata_no_git(monkeypatch):
    def no_git(*args, **kwargs):
        raise FileNotFoundError("git")

    monkeypatch.setattr(shellyrpc, "version", not_installed)
    monkeypatch.setattr(shellyrpc.subprocess, "run", no_git)
    assert shellyrpc._get_version() == "0.0.0"
