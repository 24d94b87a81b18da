# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Collection of executable scripts demonstrating the communication primitives of
the netprim package. The scripts can be started either in separate python
instances, via threads, or directly via the command line.

Currently, the following scripts are provided:

    * echo_server - Select-driven TCP echo service on the first free port of a
    range.
"""

__all__ = ["echo_server"]

from .echo_server import main as echo_server
