#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# This file is supposed to provide the 'fuse' symbol.

import importlib
import logging

logger = logging.getLogger(__name__)

# mfusepy is the maintained fork of fusepy. Distributions sometimes package fusepy under the module name 'fuse'.
FUSE_MODULE_NAMES = ['mfusepy', 'fuse', 'fusepy']


def _load_fuse():
    errors = []
    for name in FUSE_MODULE_NAMES:
        try:
            module = importlib.import_module(name)
        except (ImportError, OSError) as exception:
            # OSError is raised by the ctypes bindings when libfuse itself is missing.
            errors.append(f"{name}: {exception}")
            continue

        # The unrelated python-fuse bindings also install a module named 'fuse'.
        if hasattr(module, 'Operations') and hasattr(module, 'FUSE'):
            if name != FUSE_MODULE_NAMES[0]:
                logger.warning("Failed to load %s. Using %s instead.", FUSE_MODULE_NAMES[0], name)
            return module
        errors.append(f"{name}: module does not provide the fusepy interface")

    raise ImportError(
        "Did not find any FUSE installation. Please install it, e.g., with: "
        "'apt install libfuse2' or 'yum install fuse fuse-libs'. Errors were: " + "; ".join(errors)
    )


fuse = _load_fuse()
