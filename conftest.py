#!/usr/bin/env python3
"""
Pytest configuration for the file capitaliser tests.

- Points HOME at a temporary directory so a real ~/.config/file_capitaliser
  settings file never leaks into a test run
- Prints the location of unexpected exceptions (not assertion failures)
  straight to stderr, bypassing output capture
"""

import sys
import traceback

import pytest


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    home = tmp_path / 'home'
    home.mkdir()
    monkeypatch.setenv('HOME', str(home))
    return home


def format_exception_details(exc_type, exc_value, exc_traceback):
    """
    Print exception type, message and the innermost project frame.

    Returns True if the exception was printed, False for AssertionErrors.
    """
    if exc_type is AssertionError:
        return False

    tb_frames = traceback.extract_tb(exc_traceback)

    # Innermost frame from our own code (not from pytest or library code)
    user_frame = None
    for frame in reversed(tb_frames):
        if '/site-packages/' not in frame.filename and '/usr/lib/' not in frame.filename:
            user_frame = frame
            break
    if not user_frame and tb_frames:
        user_frame = tb_frames[-1]

    location = f"{user_frame.filename}:{user_frame.lineno} (in {user_frame.name})" if user_frame else "unknown location"

    print("\n==== EXCEPTION DETAILS ====", file=sys.__stderr__)
    print(f"Exception Type: {exc_type.__name__}", file=sys.__stderr__)
    print(f"Exception Message: {exc_value}", file=sys.__stderr__)
    print(f"Location: {location}", file=sys.__stderr__)
    if user_frame and user_frame.line:
        print(f"\n    {user_frame.line}", file=sys.__stderr__)
    print("==== END EXCEPTION DETAILS ====\n", file=sys.__stderr__)
    return True


def pytest_exception_interact(node, call, report):
    """Called by pytest when a test raises; show where unexpected errors came from."""
    if call.excinfo:
        format_exception_details(call.excinfo.type, call.excinfo.value, call.excinfo.tb)
