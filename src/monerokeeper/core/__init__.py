"""Core orchestration.

The keeper orders the daemon and wallet supervisors; the daemon module runs
the keeper in the foreground or detached from the terminal.
"""
