# Copyright (C) 2024-2025 DAI-Labor and others
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
netprim provides the lowest layer of a distributed coordination stack: resolving
host addresses, creating, binding, and connecting TCP sockets, transferring bytes
with well-defined partial I/O semantics, and waiting on the readiness of many
sockets at once. Anything built on top (handshakes, message framing, collective
communication) is left to the caller.

See the communication subpackage for more information.
"""
