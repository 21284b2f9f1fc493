"""Test package for the Visual Rhythm test.

Core tests drive the staircase, queue, envelope and engine modules with a
fake clock and seeded RNGs. UI tests run headlessly using pygame's dummy
video driver. To run them, execute ``pytest`` from the project root.
"""
