# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Rootbox: a sandboxed Debian userspace behind multiplexed terminals.

Two subsystems do the real work:

- ``rootbox.environment`` prepares the on-disk environment once (sandbox
  binary, shared libraries, unpacked rootfs, completion marker) and builds
  the sandbox invocation for each session.
- ``rootbox.session`` spawns, multiplexes, and supervises the interactive
  processes, each bound to its own pseudo-terminal.

``rootbox.controller`` ties them together the way an interactive front
end would.
"""

__version__ = "0.1.0"
