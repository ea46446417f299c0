"""Test package for the arithmetic drill trainer.

The session engine tests drive time with a fake clock and need no display.
The UI smoke test runs pygame on its dummy video/audio drivers.  Run
``pytest`` from the project root.
"""
