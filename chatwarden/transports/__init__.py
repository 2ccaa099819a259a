# -*- coding: utf-8 -*-
"""Location: ./chatwarden/transports/__init__.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Chat platform transports.
"""
