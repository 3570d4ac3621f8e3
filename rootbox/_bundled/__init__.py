# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Static resources bundled into the wheel.

Subpackages:

- ``rootbox._bundled.assets`` — proot binary, loaders, shared libraries
  and the rootfs archive (dropped in by the release build)
"""
