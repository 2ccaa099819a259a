# -*- coding: utf-8 -*-
"""Location: ./chatwarden/__init__.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

chatwarden - guarded command execution for multi-tenant chat servers.

A chat bot that parses command messages, authorizes every invocation against
a per-tenant allow-list, and runs user supplied scripts inside an isolated
Python sandbox.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
