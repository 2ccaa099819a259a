# -*- coding: utf-8 -*-
"""Location: ./chatwarden/services/__init__.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Services package: policy engine, sandbox, command registry, message handling,
storage and logging.
"""
